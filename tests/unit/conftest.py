"""Shared fixtures for unit tests."""

from unittest.mock import MagicMock

import pytest
from portal_pages import make_portal_http


@pytest.fixture
def portal_http() -> MagicMock:
    """Mock requests.Session that plays a portal accepting the login."""
    return make_portal_http()


@pytest.fixture
def credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Configure portal credentials through the environment."""
    monkeypatch.setenv("PORTALKEY_USERNAME", "alice")
    monkeypatch.setenv("PORTALKEY_PASSWORD", "s3cret")

    from portalkey.config import reset_settings

    reset_settings()

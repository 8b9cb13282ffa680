"""Pytest configuration for portalkey tests."""

import sys
from pathlib import Path

import pytest
import structlog
from structlog._config import BoundLoggerLazyProxy

# Add src directory to sys.path for test imports
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))


@pytest.fixture(autouse=True)
def isolated_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate each test with its own state directory.

    This fixture:
    - Points PORTALKEY_STATE_DIR at a temporary directory
    - Clears credentials inherited from the environment
    - Resets the global settings instance before each test
    """
    state_dir = tmp_path / "portalkey"

    monkeypatch.setenv("PORTALKEY_STATE_DIR", str(state_dir))
    for name in ("PORTALKEY_USERNAME", "PORTALKEY_PASSWORD", "PORTALKEY_LOCK_PATH"):
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the tests
    monkeypatch.chdir(tmp_path)

    from portalkey.config import reset_settings

    reset_settings()

    return state_dir


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Reset structlog after each test to prevent closed file handle errors.

    CliRunner captures stderr with a temporary file. When configure_logging()
    runs inside CliRunner, structlog binds loggers to that temp file. After
    the test, CliRunner closes the file, so reset structlog to drop the stale
    references.
    """
    yield
    structlog.reset_defaults()
    for module in list(sys.modules.values()):
        for attr in getattr(module, "__dict__", {}).values():
            if isinstance(attr, BoundLoggerLazyProxy):
                attr.__dict__.pop("bind", None)

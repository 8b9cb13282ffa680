"""Persisted authentication record.

The record lives in plain files under the state directory so it survives
restarts and can be inspected with ``cat``:

- ``status``: one of ``unknown``, ``authenticated``, ``failed``
- ``last_success``: integer epoch seconds of the last successful login
- ``last_failure.html``: raw body of the most recent failed attempt

Callers must hold the run-lock around every load/save pair; individual
files are replaced atomically, but the pair is only consistent under the lock.
"""

import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path

from portalkey.exceptions import StorageError
from portalkey.logging import get_logger

LOG = get_logger(__name__)

STATUS_FILE = "status"
LAST_SUCCESS_FILE = "last_success"
LAST_FAILURE_FILE = "last_failure.html"

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class AuthStatus(StrEnum):
    """Authentication status of this host against the portal."""

    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthRecord:
    """Persisted authentication record.

    Attributes:
        status: Current authentication status.
        last_success: Epoch seconds of the last successful login (0 = never).
    """

    status: AuthStatus = AuthStatus.UNKNOWN
    last_success: int = 0

    def session_age(self, now: float) -> int:
        """Seconds elapsed since the last successful login."""
        return int(now) - self.last_success

    def is_expired(self, now: float, session_duration: int) -> bool:
        """Whether the session validity window has elapsed."""
        return self.session_age(now) >= session_duration

    def authenticated_at(self, now: float) -> "AuthRecord":
        """Return a new record marked authenticated at ``now``."""
        return replace(self, status=AuthStatus.AUTHENTICATED, last_success=int(now))

    def failed(self) -> "AuthRecord":
        """Return a new record marked failed, keeping ``last_success``."""
        return replace(self, status=AuthStatus.FAILED)


class StateStore:
    """File-backed store for the single per-host AuthRecord."""

    def __init__(self, state_dir: Path, clock: Callable[[], float] = time.time) -> None:
        """Initialize the state store.

        Args:
            state_dir: Directory holding the record files.
            clock: Callable returning the current epoch time.
        """
        self.state_dir = state_dir
        self._clock = clock

    @property
    def status_path(self) -> Path:
        return self.state_dir / STATUS_FILE

    @property
    def last_success_path(self) -> Path:
        return self.state_dir / LAST_SUCCESS_FILE

    @property
    def failure_path(self) -> Path:
        return self.state_dir / LAST_FAILURE_FILE

    def provision(self) -> None:
        """Create the state directory with owner-only permissions.

        Raises:
            StorageError: If the directory cannot be created.
        """
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True, mode=_DIR_MODE)
            os.chmod(self.state_dir, _DIR_MODE)
        except OSError as exc:
            raise StorageError(f"Cannot provision state directory {self.state_dir}: {exc}") from exc

    def load(self) -> AuthRecord:
        """Load the record, failing open to ``unknown`` on any problem.

        Returns:
            The persisted AuthRecord, or a default record stamped with the
            current time when the files are missing or corrupt.
        """
        default = AuthRecord(status=AuthStatus.UNKNOWN, last_success=int(self._clock()))
        if not self.status_path.exists():
            LOG.debug("state_record_missing", state_dir=str(self.state_dir))
            return default

        try:
            status = AuthStatus(self.status_path.read_text().strip())
            last_success = 0
            if self.last_success_path.exists():
                raw = self.last_success_path.read_text().strip()
                last_success = int(raw) if raw else 0
        except (OSError, ValueError) as exc:
            LOG.warning(
                "state_record_corrupt",
                state_dir=str(self.state_dir),
                error=str(exc),
            )
            return default

        return AuthRecord(status=status, last_success=last_success)

    def save(self, record: AuthRecord) -> None:
        """Overwrite the persisted record.

        Raises:
            StorageError: If the record cannot be written.
        """
        self.provision()
        try:
            self._write_atomic(self.status_path, record.status.value)
            self._write_atomic(self.last_success_path, str(record.last_success))
        except OSError as exc:
            raise StorageError(f"Cannot save state record: {exc}") from exc
        LOG.debug(
            "state_record_saved",
            status=record.status.value,
            last_success=record.last_success,
        )

    def save_failure(self, body: str) -> Path:
        """Overwrite the last-failure diagnostic with ``body``.

        Raises:
            StorageError: If the diagnostic cannot be written.
        """
        self.provision()
        try:
            self._write_atomic(self.failure_path, body)
        except OSError as exc:
            raise StorageError(f"Cannot save failure diagnostic: {exc}") from exc
        return self.failure_path

    def read_failure(self) -> str | None:
        """Return the last-failure diagnostic body, if any."""
        try:
            return self.failure_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def clear(self) -> None:
        """Remove the record and diagnostic files."""
        for path in (self.status_path, self.last_success_path, self.failure_path):
            path.unlink(missing_ok=True)
        LOG.info("state_record_cleared", state_dir=str(self.state_dir))

    def _write_atomic(self, path: Path, content: str) -> None:
        """Write ``content`` to ``path`` via temp file + rename."""
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(temp_path, _FILE_MODE)
            Path(temp_path).rename(path)
        except Exception:
            # Clean up temp file on failure
            Path(temp_path).unlink(missing_ok=True)
            raise

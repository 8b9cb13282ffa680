"""Host-wide run-lock backed by ``fcntl.flock``.

Only one decision cycle may run at a time. Acquisition never blocks: an
invocation that finds the lock held gives up immediately instead of queueing
a duplicate login attempt.
"""

import fcntl
import os
from pathlib import Path
from types import TracebackType
from typing import IO, Self

from portalkey.exceptions import LockContentionError, StorageError
from portalkey.logging import get_logger

LOG = get_logger(__name__)


class RunLock:
    """Non-blocking exclusive lock on a well-known file.

    The lock file is never deleted; removing it while another process holds
    an open descriptor would let a third process lock a fresh inode.

    Example:
        >>> with RunLock(Path("/var/lib/portalkey/portalkey.lock")):
        ...     run_decision_cycle()
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        """Whether this instance currently holds the lock."""
        return self._handle is not None

    def acquire(self) -> None:
        """Acquire the lock without blocking.

        Raises:
            LockContentionError: If another holder has the lock.
            StorageError: If the lock file cannot be created or opened.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.path.open("a+")
        except OSError as exc:
            raise StorageError(f"Cannot open run-lock {self.path}: {exc}") from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = self._read_holder_pid(handle)
            handle.close()
            raise LockContentionError(str(self.path), holder) from None
        except Exception:
            handle.close()
            raise

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        LOG.debug("run_lock_acquired", path=str(self.path))

    def release(self) -> None:
        """Release the lock if held."""
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        LOG.debug("run_lock_released", path=str(self.path))

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    @staticmethod
    def _read_holder_pid(handle: IO[str]) -> int | None:
        handle.seek(0)
        raw = handle.read().strip()
        return int(raw) if raw.isdigit() else None

"""Custom exceptions for portalkey package."""


class PortalkeyError(Exception):
    """Base exception class for all portalkey errors."""


class ConfigurationError(PortalkeyError):
    """Raised when required settings are missing or invalid."""


class StorageError(PortalkeyError):
    """Raised when the persisted state cannot be written."""


class LockContentionError(PortalkeyError):
    """Raised when another invocation already holds the run-lock.

    Attributes:
        lock_path: Path of the contended lock file.
        holder_pid: PID recorded by the current holder, if readable.
    """

    def __init__(self, lock_path: str, holder_pid: int | None = None) -> None:
        self.lock_path = lock_path
        self.holder_pid = holder_pid
        message = f"Run-lock is held: {lock_path}"
        if holder_pid is not None:
            message += f" (pid {holder_pid})"
        super().__init__(message)


class PortalError(PortalkeyError):
    """Base class for failures during a portal login attempt.

    Attributes:
        step: Name of the login step that failed.
        body: Raw response text kept for diagnosis (may be empty).
    """

    def __init__(self, message: str, step: str, body: str = "") -> None:
        super().__init__(message)
        self.step = step
        self.body = body


class TransientNetworkError(PortalError):
    """Raised on timeouts, DNS failures or refused connections at a portal step."""


class ProtocolExtractionError(PortalError):
    """Raised when an expected pattern is not found in a portal response."""

"""portalkey - keep a host logged in behind a captive portal.

Each invocation makes one decision: skip, log in, or record that the
network is already open. State persists on disk between invocations so
repeated runs from a timer or an interface hook stay cheap and idempotent.

This package provides:
- A persisted authentication record with fail-open loading
- A cheap DNS-based connectivity probe
- A login protocol handler for FortiGate-style keepalive portals
- A lock-guarded state machine tying them together

Example:
    >>> from portalkey import AuthOrchestrator, get_settings
    >>> outcome = AuthOrchestrator.from_settings(get_settings()).run()
    >>> outcome.action
    <Action.SKIP: 'skip'>
"""

from portalkey.config import PortalkeySettings, get_settings
from portalkey.exceptions import (
    ConfigurationError,
    LockContentionError,
    PortalError,
    PortalkeyError,
    ProtocolExtractionError,
    StorageError,
    TransientNetworkError,
)
from portalkey.lock import RunLock
from portalkey.orchestrator import Action, AuthOrchestrator, RunOutcome, decide
from portalkey.portal import LoginResult, PortalSession, SessionArtifacts
from portalkey.probe import has_internet
from portalkey.state import AuthRecord, AuthStatus, StateStore

__version__ = "0.3.0"

__all__ = [
    # Version
    "__version__",
    # State machine
    "Action",
    "AuthOrchestrator",
    "RunOutcome",
    "decide",
    # Components
    "AuthRecord",
    "AuthStatus",
    "StateStore",
    "RunLock",
    "has_internet",
    "PortalSession",
    "LoginResult",
    "SessionArtifacts",
    # Configuration
    "PortalkeySettings",
    "get_settings",
    # Exceptions
    "PortalkeyError",
    "ConfigurationError",
    "StorageError",
    "LockContentionError",
    "PortalError",
    "TransientNetworkError",
    "ProtocolExtractionError",
]

"""Authentication state machine.

One call to :meth:`AuthOrchestrator.run` is one decision cycle: take the
run-lock, load the persisted record, probe connectivity, pick an action from
the transition table, carry it out, persist the result and release the lock.
Repetition is left to whatever scheduler invokes ``portalkey run``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from portalkey.exceptions import LockContentionError
from portalkey.lock import RunLock
from portalkey.logging import get_logger
from portalkey.portal import LoginResult, PortalSession
from portalkey.probe import has_internet
from portalkey.state import AuthRecord, AuthStatus, StateStore

if TYPE_CHECKING:
    from portalkey.config import PortalkeySettings

LOG = get_logger(__name__)

DEFAULT_SESSION_DURATION = 43200  # 12 hours


class Action(StrEnum):
    """What a decision cycle does."""

    SKIP = "skip"
    LOGIN = "login"
    MARK_AUTHENTICATED = "mark_authenticated"


# (status, session_expired, has_internet) -> action
TRANSITIONS: dict[tuple[AuthStatus, bool, bool], Action] = {
    (AuthStatus.AUTHENTICATED, False, True): Action.SKIP,
    (AuthStatus.AUTHENTICATED, False, False): Action.LOGIN,
    (AuthStatus.AUTHENTICATED, True, True): Action.LOGIN,
    (AuthStatus.AUTHENTICATED, True, False): Action.LOGIN,
    (AuthStatus.UNKNOWN, False, True): Action.MARK_AUTHENTICATED,
    (AuthStatus.UNKNOWN, True, True): Action.MARK_AUTHENTICATED,
    (AuthStatus.UNKNOWN, False, False): Action.LOGIN,
    (AuthStatus.UNKNOWN, True, False): Action.LOGIN,
    (AuthStatus.FAILED, False, True): Action.MARK_AUTHENTICATED,
    (AuthStatus.FAILED, True, True): Action.MARK_AUTHENTICATED,
    (AuthStatus.FAILED, False, False): Action.LOGIN,
    (AuthStatus.FAILED, True, False): Action.LOGIN,
}


def decide(
    status: AuthStatus,
    session_expired: bool,
    internet: bool,
    force: bool = False,
) -> Action:
    """Look up the action for one decision cycle.

    Args:
        status: Persisted authentication status.
        session_expired: Whether the session validity window has elapsed.
        internet: Result of the connectivity probe.
        force: Always log in, ignoring the table.

    Returns:
        The action to take.
    """
    if force:
        return Action.LOGIN
    return TRANSITIONS[(status, session_expired, internet)]


@dataclass(frozen=True)
class RunOutcome:
    """Result of one decision cycle.

    Attributes:
        action: Action taken.
        record: Record as persisted after the cycle.
        login: Login result when the portal was contacted.
    """

    action: Action
    record: AuthRecord
    login: LoginResult | None = None


class AuthOrchestrator:
    """Combines state, probe and portal session into one decision per run."""

    def __init__(
        self,
        store: StateStore,
        lock: RunLock,
        portal: PortalSession,
        *,
        probe: Callable[[], bool] = has_internet,
        session_duration: int = DEFAULT_SESSION_DURATION,
        clock: Callable[[], float] = time.time,
        credentials_check: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Persisted record store.
            lock: Host-wide run-lock.
            portal: Portal session used when a login is needed.
            probe: Connectivity check returning True when online.
            session_duration: Seconds a successful login stays trusted.
            clock: Callable returning the current epoch time.
            credentials_check: Called before a portal login; raises
                ConfigurationError when credentials are missing.
        """
        self.store = store
        self.lock = lock
        self.portal = portal
        self.probe = probe
        self.session_duration = session_duration
        self.clock = clock
        self.credentials_check = credentials_check

    @classmethod
    def from_settings(cls, settings: PortalkeySettings) -> AuthOrchestrator:
        """Wire an orchestrator from settings."""
        portal = PortalSession(
            settings.probe_url,
            settings.username,
            settings.password.get_secret_value(),
            probe_timeout=settings.probe_timeout,
            login_timeout=settings.login_timeout,
        )
        return cls(
            store=StateStore(settings.state_dir),
            lock=RunLock(settings.run_lock_path),
            portal=portal,
            probe=lambda: has_internet(settings.dns_probe_host, settings.dns_timeout),
            session_duration=settings.session_duration_seconds,
            credentials_check=settings.require_credentials,
        )

    def run(self, force: bool = False) -> RunOutcome:
        """Run one decision cycle.

        Args:
            force: Log in even when the table says otherwise.

        Returns:
            RunOutcome describing what happened.

        Raises:
            LockContentionError: If another invocation holds the run-lock.
            ConfigurationError: If a login is needed but credentials are missing.
            StorageError: If the state directory cannot be written.
        """
        self.store.provision()
        try:
            self.lock.acquire()
        except LockContentionError as exc:
            LOG.warning(
                "run_skipped_lock_held",
                lock_path=exc.lock_path,
                holder_pid=exc.holder_pid,
            )
            raise

        try:
            return self._cycle(force)
        finally:
            self.lock.release()

    def _cycle(self, force: bool) -> RunOutcome:
        LOG.info("run_started", force=force)
        now = self.clock()
        record = self.store.load()
        expired = record.is_expired(now, self.session_duration)
        internet = self.probe()
        action = decide(record.status, expired, internet, force=force)
        LOG.info(
            "run_state_observed",
            status=record.status.value,
            session_age=record.session_age(now),
            session_expired=expired,
            internet=internet,
            action=action.value,
        )

        if action is Action.SKIP:
            LOG.info("run_finished", action=action.value, status=record.status.value)
            return RunOutcome(action=action, record=record)

        if action is Action.MARK_AUTHENTICATED:
            updated = record.authenticated_at(now)
            self.store.save(updated)
            LOG.info("run_finished", action=action.value, status=updated.status.value)
            return RunOutcome(action=action, record=updated)

        if self.credentials_check is not None:
            self.credentials_check()
        result = self.portal.login()
        if result.success:
            updated = record.authenticated_at(self.clock())
            self.store.save(updated)
        else:
            updated = record.failed()
            self.store.save(updated)
            diagnostic = self.store.save_failure(result.body)
            LOG.warning(
                "run_login_failed",
                failed_step=result.failed_step,
                diagnostic=str(diagnostic),
            )
        LOG.info(
            "run_finished",
            action=action.value,
            status=updated.status.value,
            success=result.success,
        )
        return RunOutcome(action=action, record=updated, login=result)

"""Tests for the authentication state machine."""

from unittest.mock import MagicMock

import pytest
from portal_pages import FAILURE_PAGE, make_portal_http

from portalkey.exceptions import ConfigurationError, LockContentionError
from portalkey.lock import RunLock
from portalkey.orchestrator import TRANSITIONS, Action, AuthOrchestrator, decide
from portalkey.portal import LoginResult, PortalSession
from portalkey.state import AuthRecord, AuthStatus, StateStore

NOW = 1_760_000_000
DURATION = 43200


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(isolated_state, clock):
    return StateStore(isolated_state, clock=clock)


@pytest.fixture
def portal():
    portal = MagicMock(spec=PortalSession)
    portal.login.return_value = LoginResult(success=True, body="Welcome")
    return portal


def make_orchestrator(store, portal, clock, internet=True, credentials_check=None):
    return AuthOrchestrator(
        store=store,
        lock=RunLock(store.state_dir / "portalkey.lock"),
        portal=portal,
        probe=MagicMock(return_value=internet),
        session_duration=DURATION,
        clock=clock,
        credentials_check=credentials_check,
    )


class TestDecide:
    """Tests for the transition table."""

    def test_table_is_complete(self):
        """Test every (status, expired, internet) combination has an action."""
        keys = {
            (status, expired, internet)
            for status in AuthStatus
            for expired in (False, True)
            for internet in (False, True)
        }
        assert set(TRANSITIONS) == keys

    def test_authenticated_fresh_online_skips(self):
        """Test a valid session with internet does nothing."""
        assert decide(AuthStatus.AUTHENTICATED, False, True) is Action.SKIP

    def test_authenticated_fresh_offline_logs_in(self):
        """Test a valid session without internet logs in again."""
        assert decide(AuthStatus.AUTHENTICATED, False, False) is Action.LOGIN

    @pytest.mark.parametrize("internet", [True, False])
    def test_authenticated_expired_logs_in(self, internet):
        """Test an expired session logs in regardless of connectivity."""
        assert decide(AuthStatus.AUTHENTICATED, True, internet) is Action.LOGIN

    @pytest.mark.parametrize("status", [AuthStatus.UNKNOWN, AuthStatus.FAILED])
    @pytest.mark.parametrize("expired", [True, False])
    def test_not_authenticated_online_marks(self, status, expired):
        """Test internet access without a record is recorded as authenticated."""
        assert decide(status, expired, True) is Action.MARK_AUTHENTICATED

    @pytest.mark.parametrize("status", [AuthStatus.UNKNOWN, AuthStatus.FAILED])
    @pytest.mark.parametrize("expired", [True, False])
    def test_not_authenticated_offline_logs_in(self, status, expired):
        """Test no internet without a record logs in."""
        assert decide(status, expired, False) is Action.LOGIN

    @pytest.mark.parametrize("status", list(AuthStatus))
    def test_force_always_logs_in(self, status):
        """Test force overrides the table."""
        assert decide(status, False, True, force=True) is Action.LOGIN


class TestAuthOrchestratorRun:
    """Tests for AuthOrchestrator.run()."""

    def test_unknown_with_internet_marks_without_login(self, store, portal, clock):
        """Test {unknown, 0} + internet becomes {authenticated, now} with no login."""
        store.save(AuthRecord(AuthStatus.UNKNOWN, 0))

        outcome = make_orchestrator(store, portal, clock, internet=True).run()

        assert outcome.action is Action.MARK_AUTHENTICATED
        assert store.load() == AuthRecord(AuthStatus.AUTHENTICATED, NOW)
        portal.login.assert_not_called()

    def test_first_run_with_internet(self, store, portal, clock):
        """Test a first run with no record and internet marks authenticated."""
        outcome = make_orchestrator(store, portal, clock, internet=True).run()

        assert outcome.record == AuthRecord(AuthStatus.AUTHENTICATED, NOW)
        portal.login.assert_not_called()

    @pytest.mark.parametrize("internet", [True, False])
    def test_expired_session_logs_in(self, store, portal, clock, internet):
        """Test an expired authenticated record logs in whatever the probe says."""
        store.save(AuthRecord(AuthStatus.AUTHENTICATED, NOW - 50000))

        outcome = make_orchestrator(store, portal, clock, internet=internet).run()

        assert outcome.action is Action.LOGIN
        portal.login.assert_called_once()
        assert store.load() == AuthRecord(AuthStatus.AUTHENTICATED, NOW)

    def test_fresh_session_online_is_noop(self, store, portal, clock):
        """Test a valid session with internet leaves the record untouched."""
        record = AuthRecord(AuthStatus.AUTHENTICATED, NOW - 100)
        store.save(record)
        mtime = store.last_success_path.stat().st_mtime_ns

        outcome = make_orchestrator(store, portal, clock, internet=True).run()

        assert outcome.action is Action.SKIP
        assert outcome.record == record
        assert store.last_success_path.stat().st_mtime_ns == mtime
        portal.login.assert_not_called()

    def test_fresh_session_offline_logs_in(self, store, portal, clock):
        """Test a valid session without internet logs in again."""
        store.save(AuthRecord(AuthStatus.AUTHENTICATED, NOW - 100))

        outcome = make_orchestrator(store, portal, clock, internet=False).run()

        assert outcome.action is Action.LOGIN
        assert outcome.login is not None and outcome.login.success
        assert store.load() == AuthRecord(AuthStatus.AUTHENTICATED, NOW)

    def test_login_failure_keeps_last_success(self, store, portal, clock):
        """Test a failed login sets failed, keeps the timestamp and saves the body."""
        store.save(AuthRecord(AuthStatus.AUTHENTICATED, NOW - 50000))
        portal.login.return_value = LoginResult(
            success=False, body=FAILURE_PAGE, failed_step="classify"
        )

        outcome = make_orchestrator(store, portal, clock, internet=False).run()

        assert outcome.record == AuthRecord(AuthStatus.FAILED, NOW - 50000)
        assert store.load() == AuthRecord(AuthStatus.FAILED, NOW - 50000)
        assert store.read_failure() == FAILURE_PAGE

    def test_missing_redirect_scenario(self, store, clock):
        """Test a probe page without redirect ends failed with that page saved."""
        body = "<html><body>Plain page, no redirect</body></html>"
        portal = PortalSession(
            "http://neverssl.com/",
            "alice",
            "s3cret",
            http=make_portal_http(redirect_page=body),
        )
        store.save(AuthRecord(AuthStatus.UNKNOWN, 0))

        outcome = make_orchestrator(store, portal, clock, internet=False).run()

        assert outcome.login is not None
        assert outcome.login.failed_step == "redirect"
        assert store.read_failure() == body
        assert store.load() == AuthRecord(AuthStatus.FAILED, 0)

    def test_repeated_success_is_idempotent(self, store, clock):
        """Test two logins in a row stay authenticated with non-decreasing timestamps."""
        store.save(AuthRecord(AuthStatus.AUTHENTICATED, NOW - 50000))
        portal = PortalSession(
            "http://neverssl.com/", "alice", "s3cret", http=make_portal_http()
        )
        orchestrator = make_orchestrator(store, portal, clock, internet=False)

        first = orchestrator.run()
        clock.now += 60
        second = orchestrator.run()

        assert first.record.status is AuthStatus.AUTHENTICATED
        assert second.record.status is AuthStatus.AUTHENTICATED
        assert second.record.last_success >= first.record.last_success

    def test_force_logs_in_with_fresh_session(self, store, portal, clock):
        """Test force=True logs in even when the table says skip."""
        store.save(AuthRecord(AuthStatus.AUTHENTICATED, NOW - 100))

        outcome = make_orchestrator(store, portal, clock, internet=True).run(force=True)

        assert outcome.action is Action.LOGIN
        portal.login.assert_called_once()

    def test_lock_contention_skips_without_touching_state(self, store, portal, clock):
        """Test a concurrent invocation aborts and leaves the record alone."""
        record = AuthRecord(AuthStatus.FAILED, 777)
        store.save(record)
        orchestrator = make_orchestrator(store, portal, clock, internet=True)

        with RunLock(orchestrator.lock.path):
            with pytest.raises(LockContentionError):
                orchestrator.run()

        orchestrator.probe.assert_not_called()
        portal.login.assert_not_called()
        assert store.load() == record

    def test_lock_released_after_run(self, store, portal, clock):
        """Test the lock is free once run() returns."""
        orchestrator = make_orchestrator(store, portal, clock)
        orchestrator.run()

        assert orchestrator.lock.held is False
        with RunLock(orchestrator.lock.path) as lock:
            assert lock.held is True

    def test_lock_released_when_cycle_raises(self, store, portal, clock):
        """Test an unexpected error still releases the lock."""
        orchestrator = make_orchestrator(store, portal, clock, internet=False)
        portal.login.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            orchestrator.run()

        assert orchestrator.lock.held is False


class TestCredentialsCheck:
    """Tests for deferring the credential check until a login is needed."""

    def test_not_called_when_marking_authenticated(self, store, portal, clock):
        """Test an open network needs no credentials."""
        check = MagicMock(side_effect=ConfigurationError("missing"))

        outcome = make_orchestrator(
            store, portal, clock, internet=True, credentials_check=check
        ).run()

        assert outcome.action is Action.MARK_AUTHENTICATED
        check.assert_not_called()

    def test_missing_credentials_abort_login(self, store, portal, clock):
        """Test a needed login without credentials raises and leaves state alone."""
        record = AuthRecord(AuthStatus.AUTHENTICATED, NOW - 50000)
        store.save(record)
        check = MagicMock(side_effect=ConfigurationError("missing"))
        orchestrator = make_orchestrator(
            store, portal, clock, internet=False, credentials_check=check
        )

        with pytest.raises(ConfigurationError):
            orchestrator.run()

        portal.login.assert_not_called()
        assert store.load() == record
        assert orchestrator.lock.held is False

    def test_called_before_login(self, store, portal, clock):
        """Test the check runs when the table asks for a login."""
        check = MagicMock()

        make_orchestrator(store, portal, clock, internet=False, credentials_check=check).run()

        check.assert_called_once_with()
        portal.login.assert_called_once()

class TestFromSettings:
    """Tests for AuthOrchestrator.from_settings()."""

    def test_wiring(self, credentials, monkeypatch):
        """Test settings flow into store, lock and portal session."""
        monkeypatch.setenv("PORTALKEY_SESSION_DURATION_SECONDS", "600")
        monkeypatch.setenv("PORTALKEY_PROBE_URL", "http://example.org/")
        from portalkey.config import get_settings, reset_settings

        reset_settings()
        settings = get_settings()

        orchestrator = AuthOrchestrator.from_settings(settings)

        assert orchestrator.session_duration == 600
        assert orchestrator.store.state_dir == settings.state_dir
        assert orchestrator.lock.path == settings.state_dir / "portalkey.lock"
        assert orchestrator.portal.probe_url == "http://example.org/"
        assert orchestrator.portal.username == "alice"
        assert orchestrator.credentials_check == settings.require_credentials

"""Captive portal login protocol.

Drives one authentication attempt against a FortiGate-style keepalive portal:

1. ``redirect``: fetch the probe URL; the portal answers with a page whose
   script (or meta refresh) sends the browser to ``…/fgtauth?<hex token>``.
2. ``cookie``: HEAD the redirect URL to obtain the portal session cookie.
3. ``auth_token``: read the hex token from the redirect URL (diagnostic only).
4. ``form``: fetch the login page and read the hidden ``magic`` and
   ``4Tredir`` inputs.
5. ``submit``: POST credentials plus the hidden values back to the portal.
6. ``classify``: look for a success keyword in the response body.

Every step depends on the one before it. A missing value or a network error
ends the attempt; there is no retry inside a single call.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import requests

import portalkey
from portalkey.exceptions import PortalError, ProtocolExtractionError, TransientNetworkError
from portalkey.logging import get_logger

LOG = get_logger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_LOGIN_TIMEOUT = 10.0

SUCCESS_KEYWORDS = ("success", "welcome", "logout")
SUBMIT_MARKER = "Continue"

MAGIC_FIELD = "magic"
FORM_REDIRECT_FIELD = "4Tredir"


def _hidden_input_patterns(name: str) -> tuple[re.Pattern[str], ...]:
    """Patterns for an ``<input name=… value=…>`` in either attribute order."""
    quoted = re.escape(name)
    return (
        re.compile(
            rf"""<input[^>]*\bname\s*=\s*["']{quoted}["'][^>]*\bvalue\s*=\s*["']([^"']*)["']""",
            re.IGNORECASE,
        ),
        re.compile(
            rf"""<input[^>]*\bvalue\s*=\s*["']([^"']*)["'][^>]*\bname\s*=\s*["']{quoted}["']""",
            re.IGNORECASE,
        ),
    )


@dataclass(frozen=True)
class ExtractionStep:
    """A named text-pattern extraction.

    Patterns are tried in order; the first group of the first match wins.

    Attributes:
        name: Step name used in logs and errors.
        patterns: Compiled patterns with one capturing group each.
        allow_empty: Whether an empty captured value counts as found.
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    allow_empty: bool = False

    def search(self, text: str) -> str | None:
        """Return the captured value, or None if no pattern matches."""
        for pattern in self.patterns:
            match = pattern.search(text)
            if match is None:
                continue
            value = html.unescape(match.group(1)).strip()
            if value or self.allow_empty:
                return value
        return None

    def extract(self, text: str) -> str:
        """Return the captured value.

        Raises:
            ProtocolExtractionError: If no pattern matches ``text``.
        """
        value = self.search(text)
        if value is None:
            raise ProtocolExtractionError(
                f"Expected {self.name} not found in portal response",
                step=self.name,
                body=text,
            )
        return value


REDIRECT_STEP = ExtractionStep(
    name="redirect",
    patterns=(
        re.compile(
            r"""(?:window\.|top\.|self\.|document\.)?location(?:\.href)?\s*=\s*["']([^"']+)["']""",
            re.IGNORECASE,
        ),
        re.compile(
            r"""location\.(?:replace|assign)\(\s*["']([^"']+)["']\s*\)""",
            re.IGNORECASE,
        ),
        re.compile(
            r"""<meta[^>]*http-equiv\s*=\s*["']?refresh["']?[^>]*content\s*=\s*["'][^"']*?url\s*=\s*([^"'\s>]+)""",
            re.IGNORECASE,
        ),
    ),
)

AUTH_TOKEN_STEP = ExtractionStep(
    name="auth_token",
    patterns=(re.compile(r"fgtauth\?([0-9a-fA-F]+)"),),
)

MAGIC_STEP = ExtractionStep(
    name=MAGIC_FIELD,
    patterns=_hidden_input_patterns(MAGIC_FIELD),
)

FORM_REDIRECT_STEP = ExtractionStep(
    name=FORM_REDIRECT_FIELD,
    patterns=_hidden_input_patterns(FORM_REDIRECT_FIELD),
)


def is_login_success(body: str) -> bool:
    """Classify a login response by case-insensitive keyword match."""
    lowered = body.lower()
    return any(keyword in lowered for keyword in SUCCESS_KEYWORDS)


@dataclass
class SessionArtifacts:
    """Values derived while walking the login protocol.

    Scoped to one PortalSession.login() call; nothing here is persisted.
    """

    redirect_url: str = ""
    auth_token: str = ""
    session_cookie: str = ""
    form_magic: str = ""
    form_redirect: str = ""


@dataclass
class LoginResult:
    """Outcome of one login attempt.

    Attributes:
        success: Whether the portal accepted the credentials.
        body: Raw response text kept for diagnosis on failure.
        failed_step: Name of the step that failed, if any.
        artifacts: Values collected before the attempt ended.
    """

    success: bool
    body: str = ""
    failed_step: str | None = None
    artifacts: SessionArtifacts = field(default_factory=SessionArtifacts)


class PortalSession:
    """One end-to-end login attempt against the captive portal.

    Example:
        >>> portal = PortalSession("http://neverssl.com/", "alice", "s3cret")
        >>> result = portal.login()
        >>> result.success
        True
    """

    def __init__(
        self,
        probe_url: str,
        username: str,
        password: str,
        *,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
        http: requests.Session | None = None,
    ) -> None:
        """Initialize a portal session.

        Args:
            probe_url: Plain-HTTP URL the portal intercepts.
            username: Portal username.
            password: Portal password.
            probe_timeout: Timeout in seconds for the probe fetch.
            login_timeout: Timeout in seconds for the other portal requests.
            http: Optional requests.Session; a new one is created if omitted.
        """
        self.probe_url = probe_url
        self.username = username
        self._password = password
        self.probe_timeout = probe_timeout
        self.login_timeout = login_timeout
        self._http = http

    def _session(self) -> requests.Session:
        if self._http is None:
            self._http = requests.Session()
            self._http.headers["User-Agent"] = f"portalkey/{portalkey.__version__}"
        return self._http

    def login(self) -> LoginResult:
        """Run the login protocol once.

        Returns:
            LoginResult; on failure ``body`` holds the response text of the
            failing step (or the error text when no response arrived).
        """
        artifacts = SessionArtifacts()
        try:
            body = self._run(artifacts)
        except PortalError as exc:
            LOG.warning(
                "portal_login_failed",
                step=exc.step,
                error=str(exc),
                redirect_url=artifacts.redirect_url or None,
            )
            body = exc.body
            if isinstance(exc, TransientNetworkError) and not body:
                body = str(exc)
            return LoginResult(
                success=False,
                body=body,
                failed_step=exc.step,
                artifacts=artifacts,
            )

        if is_login_success(body):
            LOG.info("portal_login_succeeded", redirect_url=artifacts.redirect_url)
            return LoginResult(success=True, body=body, artifacts=artifacts)

        LOG.warning(
            "portal_login_rejected",
            redirect_url=artifacts.redirect_url,
            hint="No success keyword in response; check credentials",
        )
        return LoginResult(success=False, body=body, failed_step="classify", artifacts=artifacts)

    def _run(self, artifacts: SessionArtifacts) -> str:
        """Walk steps 1-5, filling ``artifacts``; return the submit response body."""
        artifacts.redirect_url = self.discover_redirect()
        artifacts.session_cookie = self.capture_cookie(artifacts.redirect_url)

        token = AUTH_TOKEN_STEP.search(artifacts.redirect_url)
        if token is None:
            LOG.warning("portal_auth_token_missing", redirect_url=artifacts.redirect_url)
        else:
            artifacts.auth_token = token
            LOG.debug("portal_auth_token_found", auth_token=token)

        artifacts.form_magic, artifacts.form_redirect = self.fetch_form_values(
            artifacts.redirect_url, artifacts.session_cookie
        )
        return self.submit_credentials(artifacts)

    def discover_redirect(self) -> str:
        """Step 1: fetch the probe URL and extract the portal redirect.

        Raises:
            TransientNetworkError: If the probe URL cannot be fetched.
            ProtocolExtractionError: If the body holds no redirect directive.
        """
        response = self._request(
            "redirect",
            "GET",
            self.probe_url,
            timeout=self.probe_timeout,
            allow_redirects=False,
        )
        target = REDIRECT_STEP.extract(response.text)
        redirect_url = urljoin(self.probe_url, target)
        LOG.info("portal_redirect_discovered", redirect_url=redirect_url)
        return redirect_url

    def capture_cookie(self, redirect_url: str) -> str:
        """Step 2: HEAD the redirect URL and capture the portal cookie.

        Returns:
            Cookie header value (``name=value; …``).

        Raises:
            TransientNetworkError: If the request fails.
            ProtocolExtractionError: If the portal sets no cookie.
        """
        response = self._request(
            "cookie",
            "HEAD",
            redirect_url,
            timeout=self.login_timeout,
            allow_redirects=False,
        )
        cookie = "; ".join(f"{c.name}={c.value}" for c in response.cookies)
        if not cookie:
            raise ProtocolExtractionError(
                "Portal did not issue a session cookie",
                step="cookie",
                body=response.text,
            )
        LOG.debug("portal_cookie_captured", cookie_names=[c.name for c in response.cookies])
        return cookie

    def fetch_form_values(self, redirect_url: str, cookie: str) -> tuple[str, str]:
        """Step 4: fetch the login page and extract the hidden form values.

        Returns:
            Tuple of (magic, form redirect).

        Raises:
            TransientNetworkError: If the request fails.
            ProtocolExtractionError: If either hidden value is missing.
        """
        response = self._request(
            "form",
            "GET",
            redirect_url,
            timeout=self.login_timeout,
            headers={"Cookie": cookie},
        )
        magic = MAGIC_STEP.extract(response.text)
        form_redirect = FORM_REDIRECT_STEP.extract(response.text)
        LOG.debug("portal_form_values_found", magic=magic, form_redirect=form_redirect)
        return magic, form_redirect

    def submit_credentials(self, artifacts: SessionArtifacts) -> str:
        """Step 5: POST the credentials and return the response body.

        Raises:
            TransientNetworkError: If the request fails.
        """
        payload = {
            "username": self.username,
            "password": self._password,
            MAGIC_FIELD: artifacts.form_magic,
            FORM_REDIRECT_FIELD: artifacts.form_redirect,
            "submit": SUBMIT_MARKER,
        }
        response = self._request(
            "submit",
            "POST",
            artifacts.redirect_url,
            timeout=self.login_timeout,
            headers={"Cookie": artifacts.session_cookie},
            data=payload,
        )
        LOG.debug("portal_credentials_submitted", status_code=response.status_code)
        return response.text

    def _request(self, step: str, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Issue one request, converting network errors to TransientNetworkError."""
        try:
            return self._session().request(method, url, **kwargs)
        except requests.RequestException as exc:
            body = ""
            if exc.response is not None:
                body = exc.response.text
            raise TransientNetworkError(
                f"{method} {url} failed: {exc}",
                step=step,
                body=body,
            ) from exc

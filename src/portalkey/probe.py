"""Cheap connectivity probe.

Resolves a public host name instead of fetching a URL: a captive portal
usually lets DNS through only once the client is authenticated (or answers
with its own address), and an HTTP fetch would trip the portal's redirect
logic itself.
"""

import socket
import threading

from portalkey.logging import get_logger

LOG = get_logger(__name__)

DEFAULT_PROBE_HOST = "www.google.com"
DEFAULT_PROBE_TIMEOUT = 2.0


class _Resolution:
    """Result slot filled in by the resolver thread."""

    def __init__(self) -> None:
        self.addresses: list[str] = []
        self.error: Exception | None = None


def _resolve(host: str, result: _Resolution) -> None:
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except (OSError, UnicodeError) as exc:
        result.error = exc
        return
    result.addresses = sorted({info[4][0] for info in infos})


def has_internet(host: str = DEFAULT_PROBE_HOST, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """Check whether ``host`` resolves within ``timeout`` seconds.

    ``getaddrinfo`` has no timeout of its own, so resolution runs on a daemon
    thread that is abandoned once the deadline passes. A resolver stuck in
    its retry cycle never holds up interpreter exit.

    Args:
        host: Public host name to resolve.
        timeout: Seconds to wait for resolution.

    Returns:
        True if the name resolved to at least one address, False on timeout,
        resolution failure or any network error.
    """
    result = _Resolution()
    worker = threading.Thread(
        target=_resolve,
        args=(host, result),
        name="portalkey-dns",
        daemon=True,
    )
    worker.start()
    worker.join(timeout)

    if worker.is_alive():
        LOG.info("connectivity_probe_timeout", host=host, timeout=timeout)
        return False
    if result.error is not None:
        LOG.info("connectivity_probe_failed", host=host, error=str(result.error))
        return False

    LOG.debug("connectivity_probe_resolved", host=host, addresses=result.addresses)
    return bool(result.addresses)

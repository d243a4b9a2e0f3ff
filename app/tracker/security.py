"""
Guards for server-side fetches of user supplied URLs (SSRF).

A URL is accepted only when it is http(s) and its host is neither a private/internal
address literal nor a hostname resolving to one. Redirect targets go through the
same check before they are followed.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import urllib.request
from urllib.parse import urlsplit

from app.tracker.errors import ApiError, ErrorKind

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")


def _is_internal_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    return not ip.is_global or ip.is_multicast


def is_internal_host(hostname: str) -> bool:
    # IPv6 literals are refused outright; hostnames resolving to IPv6 still pass the lookup below.
    if "[" in hostname or "]" in hostname or ":" in hostname:
        return True

    try:
        return _is_internal_address(hostname)
    except ValueError:
        pass

    try:
        infos = socket.getaddrinfo(hostname, None)
    except (socket.gaierror, UnicodeError):
        # Unresolvable hosts are not internal; the fetch itself will fail.
        return False

    for info in infos:
        address = info[4][0]
        try:
            if _is_internal_address(address):
                return True
        except ValueError:
            return True
    return False


def validate_remote_url(url: object) -> str:
    """Returns the trimmed URL or raises ApiError."""
    if not isinstance(url, str):
        raise ApiError(f"Invalid url {type(url).__name__}.")

    trimmed = url.strip()
    try:
        parts = urlsplit(trimmed)
        hostname = parts.hostname
    except ValueError as e:
        raise ApiError(f'Invalid url "{trimmed}".') from e

    if parts.scheme not in ALLOWED_SCHEMES:
        raise ApiError(f"Invalid protocol {parts.scheme or '(none)'}.")
    if not hostname:
        raise ApiError(f'Invalid url "{trimmed}".')

    # urlsplit strips the brackets from IPv6 literals
    if "[" in parts.netloc or is_internal_host(hostname):
        logger.warning("Refusing fetch of internal url %s", trimmed)
        raise ApiError(f'Invalid url "{trimmed}".', kind=ErrorKind.EXTERNAL)

    return trimmed


class GuardedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Validates each redirect hop before urllib follows it."""

    max_redirections = 5

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[override]
        validate_remote_url(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def build_guarded_opener() -> urllib.request.OpenerDirector:
    return urllib.request.build_opener(GuardedRedirectHandler())

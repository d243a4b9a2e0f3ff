"""Tests for the outbound URL guard."""
import socket

import pytest

from app.tracker import security
from app.tracker.errors import ApiError, ErrorKind
from app.tracker.security import GuardedRedirectHandler, is_internal_host, validate_remote_url


@pytest.fixture(autouse=True)
def fake_dns(monkeypatch):
    table = {
        "example.com": "93.184.216.34",
        "intranet.example.com": "10.0.0.8",
        "metadata.example.com": "169.254.169.254",
        "localhost.": "127.0.0.1",
    }

    def getaddrinfo(host, port, *args, **kwargs):
        if host not in table:
            raise socket.gaierror("unknown host")
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (table[host], 0))]

    monkeypatch.setattr(security.socket, "getaddrinfo", getaddrinfo)


@pytest.mark.parametrize(
    "url",
    [
        "http://127.0.0.1/",
        "http://localhost.:8080/x",
        "http://10.1.2.3/",
        "http://192.168.0.1/",
        "http://169.254.169.254/latest/meta-data",
        "http://0.0.0.0/",
        "http://[::1]/",
        "http://intranet.example.com/",
        "http://metadata.example.com/",
    ],
)
def test_internal_targets_rejected(url):
    with pytest.raises(ApiError) as exc:
        validate_remote_url(url)
    assert exc.value.kind == ErrorKind.EXTERNAL


@pytest.mark.parametrize("url", ["ftp://example.com/a.pdf", "file:///etc/passwd", "javascript:alert(1)", "example.com"])
def test_non_http_schemes_rejected(url):
    with pytest.raises(ApiError) as exc:
        validate_remote_url(url)
    assert exc.value.kind == ErrorKind.VALIDATION


def test_public_url_accepted_and_trimmed():
    assert validate_remote_url("  https://example.com/a.pdf ") == "https://example.com/a.pdf"


def test_non_string_rejected():
    with pytest.raises(ApiError):
        validate_remote_url(None)


def test_unresolvable_host_is_not_internal():
    assert is_internal_host("does-not-exist.invalid") is False


def test_redirect_to_internal_host_is_refused():
    handler = GuardedRedirectHandler()
    with pytest.raises(ApiError):
        handler.redirect_request(None, None, 302, "Found", {}, "http://10.0.0.1/secret")

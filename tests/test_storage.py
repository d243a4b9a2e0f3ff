"""Tests for the on-disk asset store."""
import io
import logging
import socket
import subprocess
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from app.tracker import security, storage
from app.tracker.errors import ApiError, ErrorKind
from app.tracker.storage import IMAGE, PDF, Asset, AssetStore, remove_quietly, sniff_mimetype
from conftest import EXE_BYTES, JPEG_BYTES, PDF_BYTES, PNG_BYTES, SVG_BYTES


class FakeResponse:
    def __init__(self, body: bytes, url: str) -> None:
        self._buf = io.BytesIO(body)
        self._url = url

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def geturl(self) -> str:
        return self._url

    def read1(self, n: int = -1) -> bytes:
        return self._buf.read1(n)

    def close(self) -> None:
        self._buf.close()


class FakeOpener:
    def __init__(self, body: bytes, final_url: str | None = None) -> None:
        self.body = body
        self.final_url = final_url
        self.requested: list[str] = []

    def open(self, req, timeout=None):
        self.requested.append(req.full_url)
        return FakeResponse(self.body, self.final_url or req.full_url)


@pytest.fixture()
def public_dns(monkeypatch):
    monkeypatch.setattr(
        security.socket,
        "getaddrinfo",
        lambda *a, **k: [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 0))],
    )


@pytest.fixture()
def no_exiftool(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("exiftool")

    monkeypatch.setattr(storage.subprocess, "run", missing)


def test_sniff_mimetype():
    assert sniff_mimetype(PDF_BYTES) == "application/pdf"
    assert sniff_mimetype(PNG_BYTES) == "image/png"
    assert sniff_mimetype(JPEG_BYTES) == "image/jpeg"
    assert sniff_mimetype(SVG_BYTES) == "image/svg+xml"
    assert sniff_mimetype(EXE_BYTES) == "application/x-msdownload"
    assert sniff_mimetype(b"just some text") is None


def test_pdf_stored_under_random_name(store):
    asset = store.create_from_bytes(PDF, PDF_BYTES)
    assert asset.name.endswith(".pdf")
    assert len(asset.name) == 64 + len(".pdf")
    assert asset.read() == PDF_BYTES
    assert asset.mimetype == "application/pdf"
    assert asset.to_json() == asset.name


def test_wrong_kind_rejected(store):
    with pytest.raises(ApiError, match="Invalid asset type"):
        store.create_from_bytes(PDF, PNG_BYTES)
    with pytest.raises(ApiError, match="Invalid asset type"):
        store.create_from_bytes(IMAGE, PDF_BYTES)
    assert store.names() == set()


def test_disguised_executable_rejected(store):
    with pytest.raises(ApiError):
        store.create_from_bytes(IMAGE, EXE_BYTES)
    assert store.names() == set()


def test_too_large_rejected(tmp_path):
    small = AssetStore(tmp_path / "small", file_size_limit=16)
    with pytest.raises(ApiError, match="too large"):
        small.create_from_bytes(PDF, PDF_BYTES)


def test_svg_is_minified(store):
    asset = store.create_from_bytes(IMAGE, SVG_BYTES)
    data = asset.read()
    assert asset.name.endswith(".svg")
    assert b"<svg" in data
    assert b"<!--" not in data
    assert len(data) < len(SVG_BYTES)


def test_raster_metadata_stripped_with_exiftool(store, monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout=b"\x89PNG\r\n\x1a\nclean", stderr=b"")

    monkeypatch.setattr(storage.subprocess, "run", fake_run)
    asset = store.create_from_bytes(IMAGE, PNG_BYTES)
    assert calls == [["exiftool", "-all=", "-"]]
    assert asset.read() == b"\x89PNG\r\n\x1a\nclean"


def test_missing_exiftool_keeps_original(store, no_exiftool, caplog):
    with caplog.at_level(logging.WARNING, logger="app.tracker.storage"):
        asset = store.create_from_bytes(IMAGE, JPEG_BYTES)
    assert asset.read() == JPEG_BYTES
    assert "exiftool failed" in caplog.text


def test_from_name(store):
    asset = store.create_from_bytes(PDF, PDF_BYTES)
    assert store.from_name(asset.name) == asset
    assert store.from_name("nope.pdf") is None
    assert store.from_name("../" + asset.name) == asset
    assert store.from_name("../../etc/passwd") is None
    assert store.from_name("") is None


def test_asset_constructor_is_private(store):
    with pytest.raises(TypeError):
        Asset(store, "x.pdf")


def test_rm_and_remove_quietly(store, caplog):
    asset = store.create_from_bytes(PDF, PDF_BYTES)
    asset.rm()
    assert store.from_name(asset.name) is None
    with pytest.raises(OSError):
        asset.rm()
    with caplog.at_level(logging.WARNING, logger="app.tracker.storage"):
        remove_quietly(asset)
    assert "Could not remove asset" in caplog.text
    remove_quietly(None)


def test_create_from_url(store, public_dns):
    store.opener = FakeOpener(PDF_BYTES)
    asset = store.create_from_url(PDF, " https://example.com/file.pdf ")
    assert asset.read() == PDF_BYTES
    assert store.opener.requested == ["https://example.com/file.pdf"]


def test_create_dispatches_on_source_type(store, public_dns):
    store.opener = FakeOpener(PDF_BYTES)
    assert store.create(PDF, PDF_BYTES).read() == PDF_BYTES
    assert store.create(PDF, "https://example.com/file.pdf").read() == PDF_BYTES


def test_fetch_of_internal_url_is_refused(store):
    store.opener = FakeOpener(PDF_BYTES)
    with pytest.raises(ApiError) as exc:
        store.create_from_url(PDF, "http://127.0.0.1/file.pdf")
    assert exc.value.kind == ErrorKind.EXTERNAL
    assert store.opener.requested == []


def test_fetch_final_url_revalidated(store, public_dns):
    store.opener = FakeOpener(PDF_BYTES, final_url="http://10.0.0.1/file.pdf")
    with pytest.raises(ApiError) as exc:
        store.create_from_url(PDF, "https://example.com/file.pdf")
    assert exc.value.kind == ErrorKind.EXTERNAL
    assert store.names() == set()


def test_fetch_body_capped(tmp_path, public_dns):
    small = AssetStore(tmp_path / "small", file_size_limit=32)
    small.opener = FakeOpener(b"%PDF-" + b"0" * 100)
    with pytest.raises(ApiError, match="too large"):
        small.create_from_url(PDF, "https://example.com/big.pdf")


def test_fetch_network_error_is_external(store, public_dns):
    class Failing:
        def open(self, req, timeout=None):
            raise OSError("connection refused")

    store.opener = Failing()
    with pytest.raises(ApiError) as exc:
        store.create_from_url(PDF, "https://example.com/file.pdf")
    assert exc.value.kind == ErrorKind.EXTERNAL


class DripHandler(BaseHTTPRequestHandler):
    """Serves PDF_BYTES, one byte every `delay` seconds when delay is set."""

    delay = 0.0

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "application/pdf")
        self.send_header("Content-Length", str(len(PDF_BYTES)))
        self.end_headers()
        try:
            if not self.delay:
                self.wfile.write(PDF_BYTES)
                return
            for i in range(len(PDF_BYTES)):
                self.wfile.write(PDF_BYTES[i : i + 1])
                self.wfile.flush()
                time.sleep(self.delay)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture()
def local_server(monkeypatch):
    # the server listens on loopback, which the SSRF guard refuses otherwise
    monkeypatch.setattr(security, "is_internal_host", lambda hostname: False)
    for var in ("http_proxy", "HTTP_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(var, raising=False)
    servers = []

    def start(delay: float = 0.0) -> str:
        handler = type("Handler", (DripHandler,), {"delay": delay})
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        server.daemon_threads = True
        server.block_on_close = False
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}/file.pdf"

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def test_fetch_from_http_server(tmp_path, local_server):
    store = AssetStore(tmp_path / "assets", file_size_limit=1024 * 1024)
    asset = store.create_from_url(PDF, local_server())
    assert asset.read() == PDF_BYTES


def test_fetch_deadline_covers_slow_body(tmp_path, local_server):
    store = AssetStore(tmp_path / "assets", file_size_limit=1024 * 1024, fetch_timeout=1.0)
    # the whole body would take several seconds at this rate
    url = local_server(delay=0.1)

    started = time.monotonic()
    with pytest.raises(ApiError, match="timed out") as exc:
        store.create_from_url(PDF, url)
    elapsed = time.monotonic() - started

    assert exc.value.kind == ErrorKind.EXTERNAL
    assert elapsed < 2.0
    assert store.names() == set()

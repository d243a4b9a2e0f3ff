from __future__ import annotations

import logging
import os
import secrets
import subprocess
import threading
import urllib.error
import urllib.request
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FetchTimeout
from dataclasses import dataclass, field
from pathlib import Path

from scour import scour
from werkzeug.utils import secure_filename

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.security import build_guarded_opener, validate_remote_url

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 5.0
_READ_CHUNK = 64 * 1024

EXTENSIONS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}
MIMETYPES = {ext: mime for mime, ext in EXTENSIONS.items()}


def sniff_mimetype(data: bytes) -> str | None:
    """
    Detect the real type of an upload from its leading bytes.
    Only types we accept (plus a few common ones for error messages) are recognised.
    """
    head = data[:32]
    if head.startswith(b"%PDF-"):
        return "application/pdf"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"
    if head.startswith(b"\x7fELF"):
        return "application/x-elf"
    if head.startswith(b"MZ"):
        return "application/x-msdownload"
    # Very basic check; SVGs that do not render are acceptable.
    if b"<svg" in data:
        return "image/svg+xml"
    return None


def minify_svg(data: bytes) -> bytes:
    options = scour.parse_args(
        [
            "--enable-comment-stripping",
            "--remove-metadata",
            "--strip-xml-prolog",
            "--indent=none",
            "--no-line-breaks",
            "--quiet",
        ]
    )
    try:
        return scour.scourString(data.decode("utf-8"), options).encode("utf-8")
    except Exception as e:
        logger.warning("SVG minification failed, keeping original: %s", e)
        return data


def strip_metadata(data: bytes) -> bytes:
    """Remove EXIF and other metadata from a raster image using exiftool."""
    try:
        result = subprocess.run(
            ["exiftool", "-all=", "-"],
            input=data,
            capture_output=True,
            timeout=30,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("exiftool failed, keeping image metadata: %s", e)
        return data
    if not result.stdout:
        logger.warning("exiftool returned no output, keeping image metadata")
        return data
    return result.stdout


def _keep(mimetype: str, data: bytes) -> bytes:
    return data


def optimise_image(mimetype: str, data: bytes) -> bytes:
    if mimetype == "image/svg+xml":
        return minify_svg(data)
    return strip_metadata(data)


@dataclass(frozen=True)
class AssetKind:
    """What an asset slot accepts and how its bytes are post-processed before writing."""

    name: str
    allowed_mimetypes: frozenset[str]
    post_process: Callable[[str, bytes], bytes] = _keep


PDF = AssetKind("pdf", frozenset({"application/pdf"}))
IMAGE = AssetKind(
    "image",
    frozenset({"image/jpeg", "image/png", "image/webp", "image/svg+xml"}),
    post_process=optimise_image,
)

_CONSTRUCTOR_KEY = object()


class Asset:
    def __init__(self, store: AssetStore, name: str, *, key: object = None) -> None:
        if key is not _CONSTRUCTOR_KEY:
            raise TypeError("Asset() is private; use AssetStore.create_from_bytes/create_from_url/from_name.")
        self._store = store
        self.name = name

    def __repr__(self) -> str:
        return f"Asset({self.name!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Asset) and other.name == self.name

    def __hash__(self) -> int:
        return hash(self.name)

    @property
    def path(self) -> Path:
        return self._store.root / self.name

    @property
    def mimetype(self) -> str:
        return MIMETYPES.get(self.name.rsplit(".", 1)[-1], "application/octet-stream")

    def read(self) -> bytes:
        return self.path.read_bytes()

    def rm(self) -> None:
        self.path.unlink()

    def to_json(self) -> str:
        return self.name


def remove_quietly(asset: Asset | None) -> None:
    """Best-effort file removal; the owning row is already updated."""
    if asset is None:
        return
    try:
        asset.rm()
    except OSError as e:
        logger.warning("Could not remove asset %s: %s", asset.name, e)


@dataclass
class AssetStore:
    root: Path
    file_size_limit: int
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    opener: urllib.request.OpenerDirector = field(default_factory=build_guarded_opener)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _hydrate(self, name: str) -> Asset:
        return Asset(self, name, key=_CONSTRUCTOR_KEY)

    def _validate(self, kind: AssetKind, data: bytes) -> str:
        if len(data) > self.file_size_limit:
            raise ApiError("Asset file size is too large.")
        mimetype = sniff_mimetype(data)
        if mimetype is None or mimetype not in kind.allowed_mimetypes:
            raise ApiError(f"Invalid asset type. Got {mimetype}")
        return mimetype

    def create_from_bytes(self, kind: AssetKind, data: bytes) -> Asset:
        mimetype = self._validate(kind, data)
        processed = kind.post_process(mimetype, data)

        name = f"{secrets.token_hex(32)}.{EXTENSIONS[mimetype]}"
        (self.root / name).write_bytes(processed)
        logger.info("Stored %s asset %s (%d bytes)", kind.name, name, len(processed))
        return self._hydrate(name)

    def create_from_url(self, kind: AssetKind, url: str) -> Asset:
        return self.create_from_bytes(kind, self._safe_fetch(url))

    def create(self, kind: AssetKind, source: bytes | str) -> Asset:
        """Upload bytes are stored as-is; a string is fetched as a URL."""
        if isinstance(source, bytes):
            return self.create_from_bytes(kind, source)
        return self.create_from_url(kind, source)

    def from_name(self, name: str) -> Asset | None:
        safe_name = secure_filename(os.path.basename(name or ""))
        if not safe_name or not (self.root / safe_name).is_file():
            return None
        return self._hydrate(safe_name)

    def names(self) -> set[str]:
        return {p.name for p in self.root.iterdir() if p.is_file()}

    def _safe_fetch(self, url: str) -> bytes:
        """
        Download `url` within `fetch_timeout` seconds in total.

        The transfer runs on a worker thread; socket timeouts only bound the gap
        between packets, so the caller waits on the worker with the overall deadline.
        """
        url = validate_remote_url(url)
        req = urllib.request.Request(url, method="GET", headers={"User-Agent": "initiative-tracker"})
        cancelled = threading.Event()
        opened: list = []

        def fetch() -> bytes:
            chunks: list[bytes] = []
            size = 0
            with self.opener.open(req, timeout=self.fetch_timeout) as resp:
                opened.append(resp)
                validate_remote_url(resp.geturl())
                while not cancelled.is_set():
                    # read1 returns whatever has arrived instead of waiting for a full chunk
                    chunk = resp.read1(_READ_CHUNK)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.file_size_limit:
                        raise ApiError("File is too large.")
                    chunks.append(chunk)
            return b"".join(chunks)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="asset-fetch")
        try:
            return executor.submit(fetch).result(timeout=self.fetch_timeout)
        except FetchTimeout:
            cancelled.set()
            for resp in opened:
                resp.close()
            logger.warning("Fetching %s exceeded %.1fs", url, self.fetch_timeout)
            raise ApiError(f"Fetching {url} timed out.", kind=ErrorKind.EXTERNAL) from None
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise ApiError(f"Could not fetch {url}: {e}", kind=ErrorKind.EXTERNAL) from e
        finally:
            executor.shutdown(wait=False)

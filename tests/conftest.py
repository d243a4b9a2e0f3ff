from datetime import datetime, timedelta

import pytest

from app.tracker.api import Api
from app.tracker.db import create_tracker_engine, make_sessionmaker
from app.tracker.models import Base
from app.tracker.storage import IMAGE, PDF, AssetStore

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 32
EXE_BYTES = b"MZ\x90\x00\x03\x00\x00\x00" + b"\x00" * 32 + b"<svg>"
SVG_BYTES = b"""<?xml version="1.0" encoding="UTF-8"?>
<!-- exported by some editor -->
<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">
    <rect   x="0"  y="0" width="10" height="10" fill="#ff0000"/>
</svg>
"""


class FakeClock:
    def __init__(self, now: datetime = datetime(2025, 3, 1, 12, 0, 0)) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture()
def engine(tmp_path):
    engine = create_tracker_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(tmp_path):
    return AssetStore(tmp_path / "assets", file_size_limit=1024 * 1024)


@pytest.fixture()
def api(engine, store, clock):
    s = make_sessionmaker(engine)()
    yield Api(session=s, assets=store, clock=clock)
    s.close()


@pytest.fixture()
def login(api):
    return api.logins.create("alice", "correct horse battery staple")


@pytest.fixture()
def other_login(api):
    return api.logins.create("bob", "another password 123")


@pytest.fixture()
def make_pdf(api):
    return lambda: api.assets.create_from_bytes(PDF, PDF_BYTES)


@pytest.fixture()
def make_image(api):
    return lambda: api.assets.create_from_bytes(IMAGE, PNG_BYTES)


@pytest.fixture()
def make_initiative(api, make_pdf):
    def make(short_name: str = "Climate Initiative", **kwargs):
        kwargs.setdefault("full_name", f"{short_name} (full name)")
        kwargs.setdefault("website", None)
        return api.initiatives.create(short_name, pdf=make_pdf(), **kwargs)

    return make

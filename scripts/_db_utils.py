from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from app.tracker.api import Api
from app.tracker.config import Settings
from app.tracker.db import create_tracker_engine, make_sessionmaker
from app.tracker.migration import MigrationContext, migrate
from app.tracker.models import Base
from app.tracker.storage import AssetStore


@contextmanager
def script_api(settings: Settings) -> Iterator[Api]:
    """
    Api over a fresh engine for one-off scripts. The schema is brought up to
    date the same way create_app() does it: missing tables, then migrations.
    """
    engine = create_tracker_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    migrate(MigrationContext(engine, settings.data_dir), settings.migrations_dir)
    s = make_sessionmaker(engine)()
    try:
        yield Api(session=s, assets=AssetStore(settings.asset_dir, settings.file_size_limit))
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()

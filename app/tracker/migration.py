"""
Ordered, run-once schema migrations.

Each file in the migrations directory is named `<id>-<name>.py` and defines
`should_run(ctx) -> bool` and `run(ctx) -> None`. The id of the last migration
handled is kept in `<data_directory>/migration-state`; on start-up every
migration with a greater id is considered in ascending order, and the marker
advances past it whether or not `should_run` said yes.
"""

from __future__ import annotations

import importlib.util
import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from alembic.migration import MigrationContext as AlembicContext
from alembic.operations import Operations
from sqlalchemy.engine import Engine

from app.tracker.config import ROOT

logger = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = ROOT / "migrations" / "versions"
STATE_FILE_NAME = "migration-state"

_FILE_NAME = re.compile(r"^(\d+)-[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class MigrationContext:
    engine: Engine
    data_directory: Path

    @contextmanager
    def operations(self) -> Iterator[Operations]:
        """Alembic `op` bound to one transaction on the engine."""
        with self.engine.begin() as conn:
            yield Operations(AlembicContext.configure(conn))


class MigrationError(RuntimeError):
    pass


class Migration:
    def __init__(self, path: Path) -> None:
        match = _FILE_NAME.match(path.stem)
        if path.suffix != ".py" or not match:
            raise MigrationError(f"Invalid migration does not match file format <id>-<name>.py: {path.name}")
        self.path = path
        self.id = int(match.group(1))
        self.name = path.stem
        self._module: ModuleType | None = None

    def __repr__(self) -> str:
        return f"Migration({self.name!r})"

    def _load(self) -> ModuleType:
        if self._module is not None:
            return self._module
        spec = importlib.util.spec_from_file_location(f"tracker_migration_{self.id}", self.path)
        if spec is None or spec.loader is None:
            raise MigrationError(f"Cannot load migration {self.path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        if not callable(getattr(module, "run", None)) or not callable(getattr(module, "should_run", None)):
            raise MigrationError(f"Migration {self.name} must define run() and should_run().")
        self._module = module
        return module

    def should_run(self, ctx: MigrationContext) -> bool:
        return bool(self._load().should_run(ctx))

    def run(self, ctx: MigrationContext) -> None:
        module = self._load()
        logger.info("Migrating %s", self.name)
        module.run(ctx)
        logger.info("Done %s", self.name)


def list_migrations(directory: Path = DEFAULT_MIGRATIONS_DIR) -> list[Migration]:
    """Migrations in `directory`, sorted by id. A missing directory means no migrations."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    migrations: list[Migration] = []
    seen: set[int] = set()
    for path in directory.iterdir():
        if path.suffix != ".py" or path.name.startswith("__"):
            continue
        migration = Migration(path)
        if migration.id in seen:
            raise MigrationError(f"Duplicate migration id {migration.id}.")
        seen.add(migration.id)
        migrations.append(migration)

    return sorted(migrations, key=lambda m: m.id)


def state_path(ctx: MigrationContext) -> Path:
    return Path(ctx.data_directory) / STATE_FILE_NAME


def read_state(ctx: MigrationContext) -> int:
    path = state_path(ctx)
    if not path.exists():
        return -1
    raw = path.read_text(encoding="utf-8").strip()
    try:
        return int(raw)
    except ValueError as e:
        raise MigrationError(f"{STATE_FILE_NAME} is corrupted: {raw!r}") from e


def write_state(ctx: MigrationContext, migration_id: int) -> None:
    path = state_path(ctx)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(migration_id), encoding="utf-8")


def migrate(ctx: MigrationContext, directory: Path = DEFAULT_MIGRATIONS_DIR) -> list[str]:
    """Apply pending migrations. Returns the names of the migrations that actually ran."""
    migrations = list_migrations(directory)
    if not migrations:
        return []

    state = read_state(ctx)
    applied: list[str] = []
    for migration in migrations:
        if migration.id <= state:
            continue
        if migration.should_run(ctx):
            migration.run(ctx)
            applied.append(migration.name)
        state = migration.id
        write_state(ctx, state)
    return applied

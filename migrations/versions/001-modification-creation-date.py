"""add created_at / updated_at to databases created before they existed

Tables created by an older release lack the modification and creation
timestamps. The columns are added as nullable (SQLite cannot add a NOT NULL
column without a default) and back-filled:
- entities get "now" for both timestamps
- sessions get expires - TTL, i.e. the moment they were issued
- join rows get "now"
"""

import sqlalchemy as sa
from sqlalchemy import inspect

from app.tracker.modules.sessions.service import SESSION_TTL
from app.tracker.utils import utcnow

TIMESTAMP_COLUMNS = {
    "logins": ("created_at", "updated_at"),
    "sessions": ("created_at",),
    "people": ("created_at", "updated_at"),
    "initiatives": ("created_at", "updated_at"),
    "organisations": ("created_at", "updated_at"),
    "signatures": ("created_at",),
    "initiative_organisations": ("created_at",),
}


def _missing_columns(engine) -> dict[str, list[str]]:
    insp = inspect(engine)
    missing: dict[str, list[str]] = {}
    for table, wanted in TIMESTAMP_COLUMNS.items():
        if not insp.has_table(table):
            continue
        cols = {c["name"] for c in insp.get_columns(table)}
        absent = [c for c in wanted if c not in cols]
        if absent:
            missing[table] = absent
    return missing


def should_run(ctx) -> bool:
    return bool(_missing_columns(ctx.engine))


def run(ctx) -> None:
    missing = _missing_columns(ctx.engine)
    now = utcnow()

    with ctx.operations() as op:
        for table, columns in missing.items():
            for column in columns:
                op.add_column(table, sa.Column(column, sa.DateTime(), nullable=True))

            if table == "sessions":
                continue
            t = sa.table(table, *(sa.column(c, sa.DateTime()) for c in columns))
            op.execute(t.update().values({c: now for c in columns}))

        if "sessions" in missing:
            bind = op.get_bind()
            sessions = sa.table(
                "sessions",
                sa.column("id", sa.String()),
                sa.column("expires", sa.DateTime()),
                sa.column("created_at", sa.DateTime()),
            )
            for session_id, expires in bind.execute(sa.select(sessions.c.id, sessions.c.expires)).all():
                bind.execute(
                    sessions.update()
                    .where(sessions.c.id == session_id)
                    .values(created_at=expires - SESSION_TTL)
                )

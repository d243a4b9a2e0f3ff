"""case-insensitive unique usernames

Older databases only had a plain UNIQUE on logins.username, so "Alice" and
"alice" could both exist. Creating the index fails if such duplicates are
present; they have to be merged by hand first.
"""

import sqlalchemy as sa
from sqlalchemy import inspect

INDEX_NAME = "uq_logins_username_lower"


def should_run(ctx) -> bool:
    return inspect(ctx.engine).has_table("logins")


def run(ctx) -> None:
    # Expression indexes are not reflected on SQLite, so let the database skip an existing one.
    with ctx.operations() as op:
        op.create_index(INDEX_NAME, "logins", [sa.text("lower(username)")], unique=True, if_not_exists=True)

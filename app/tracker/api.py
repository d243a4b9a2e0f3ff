from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DbSession

from app.tracker.db import is_unique_violation
from app.tracker.models import InitiativeRow, OrganisationRow
from app.tracker.modules.initiatives.service import InitiativeRepository
from app.tracker.modules.logins.service import LoginRepository
from app.tracker.modules.organisations.service import OrganisationRepository
from app.tracker.modules.people.service import PersonRepository
from app.tracker.modules.sessions.service import SessionRepository
from app.tracker.storage import AssetStore, remove_quietly
from app.tracker.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Api:
    """
    Bundle of repositories sharing one database session, asset store and clock.

    Aggregates keep a reference back to it so they can reach each other
    (an Initiative hydrates its Organisations through `api.organisations`).
    """

    session: DbSession
    assets: AssetStore
    clock: Callable[[], datetime] = utcnow

    logins: LoginRepository = field(init=False)
    sessions: SessionRepository = field(init=False)
    people: PersonRepository = field(init=False)
    initiatives: InitiativeRepository = field(init=False)
    organisations: OrganisationRepository = field(init=False)

    def __post_init__(self) -> None:
        self.logins = LoginRepository(self)
        self.sessions = SessionRepository(self)
        self.people = PersonRepository(self)
        self.initiatives = InitiativeRepository(self)
        self.organisations = OrganisationRepository(self)

    def now(self) -> datetime:
        return self.clock()

    # Reads always go to the database; rows cached in the session are refreshed.
    def scalar(self, stmt):
        return self.session.scalars(stmt.execution_options(populate_existing=True)).first()

    def scalars(self, stmt) -> list:
        return list(self.session.scalars(stmt.execution_options(populate_existing=True)))

    def link(self, table, **values) -> bool:
        """
        Insert a join row. Returns False when the link already exists;
        any other integrity failure (unknown foreign key) propagates.
        """
        s = self.session
        try:
            s.execute(insert(table).values(created_at=self.now(), **values))
            s.commit()
        except IntegrityError as e:
            s.rollback()
            if not is_unique_violation(e):
                raise
            return False
        return True

    def unlink(self, table, *conditions) -> None:
        s = self.session
        s.execute(delete(table).where(*conditions))
        s.commit()

    def unused_asset_names(self) -> list[str]:
        referenced: set[str] = set()
        for pdf, image in self.session.execute(select(InitiativeRow.pdf, InitiativeRow.image)):
            referenced.add(pdf)
            if image:
                referenced.add(image)
        for (image,) in self.session.execute(select(OrganisationRow.image).where(OrganisationRow.image.is_not(None))):
            referenced.add(image)
        return sorted(self.assets.names() - referenced)

    def remove_unused_assets(self) -> list[str]:
        """Delete asset files no initiative or organisation row refers to."""
        removed = self.unused_asset_names()
        for name in removed:
            remove_quietly(self.assets.from_name(name))
        if removed:
            logger.info("Removed %d unused asset files", len(removed))
        return removed

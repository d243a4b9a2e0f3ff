from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from app.tracker.errors import ApiError
from app.tracker.models import InitiativeRow, PersonRow, Signature
from app.tracker.utils import new_id, sort_initiatives, sort_people, unique_slug

if TYPE_CHECKING:
    from app.tracker.api import Api
    from app.tracker.modules.initiatives.service import Initiative
    from app.tracker.modules.logins.service import Login

logger = logging.getLogger(__name__)

_CONSTRUCTOR_KEY = object()


class Person:
    """
    A signatory, private to the login that created it.

    `signatures` stays None until resolve_signatures() loads it; it is never
    hydrated implicitly so an Initiative -> Person -> Initiative walk cannot recurse.
    """

    def __init__(
        self,
        api: Api,
        id: str,
        slug: str,
        name: str,
        owner: Login,
        created_at: datetime,
        updated_at: datetime,
        *,
        key: object = None,
    ) -> None:
        if key is not _CONSTRUCTOR_KEY:
            raise TypeError("Person() is private; use api.people.create/from_id/from_slug.")
        self._api = api
        self.id = id
        self._slug = slug
        self._name = name
        self._owner = owner
        self._created_at = created_at
        self._updated_at = updated_at
        self._signatures: list[Initiative] | None = None

    def __repr__(self) -> str:
        return f"Person({self.id!r}, {self._slug!r})"

    @property
    def slug(self) -> str:
        return self._slug

    @property
    def name(self) -> str:
        return self._name

    @property
    def owner(self) -> Login:
        return self._owner

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def signatures(self) -> list[Initiative] | None:
        return self._signatures

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "owner": self.owner.id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "signatures": None if self._signatures is None else [i.to_json() for i in self._signatures],
        }

    def update_name(self, new_name: str) -> None:
        if new_name == self.name:
            return

        new_slug = self._api.people.slug_for(new_name, self.owner, current_id=self.id)
        now = self._api.now()
        s = self._api.session
        s.execute(
            update(PersonRow)
            .where(PersonRow.id == self.id)
            .values(name=new_name, slug=new_slug, updated_at=now)
        )
        s.commit()

        self._name = new_name
        self._slug = new_slug
        self._updated_at = now

    def rm(self) -> None:
        s = self._api.session
        s.execute(delete(PersonRow).where(PersonRow.id == self.id))
        s.commit()
        logger.info("Deleted person %s of login %s", self.id, self.owner.id)

    def resolve_signatures(self) -> list[Initiative]:
        stmt = (
            select(InitiativeRow)
            .join(Signature, Signature.initiative_id == InitiativeRow.id)
            .where(Signature.person_id == self.id)
        )
        initiatives = [self._api.initiatives.hydrate(row) for row in self._api.scalars(stmt)]
        self._signatures = sort_initiatives(initiatives)
        return self._signatures

    def _require_signatures(self) -> list[Initiative]:
        if self._signatures is None:
            raise ApiError("Must initialise signatures.")
        return self._signatures

    def add_signature(self, initiative: Initiative) -> None:
        signatures = self._require_signatures()
        if self._api.link(Signature, person_id=self.id, initiative_id=initiative.id):
            self._signatures = sort_initiatives([*signatures, initiative])

    def remove_signature(self, initiative: Initiative) -> None:
        signatures = self._require_signatures()
        self._api.unlink(Signature, Signature.person_id == self.id, Signature.initiative_id == initiative.id)
        self._signatures = [other for other in signatures if other.id != initiative.id]


class PersonRepository:
    """Every lookup is scoped to the owning login."""

    def __init__(self, api: Api) -> None:
        self._api = api

    def hydrate(self, row: PersonRow | None, owner: Login) -> Person | None:
        # Guards against a query that forgot the owner filter.
        if row is None or row.owner != owner.id:
            return None
        return Person(
            self._api,
            row.id,
            row.slug,
            row.name,
            owner,
            row.created_at,
            row.updated_at,
            key=_CONSTRUCTOR_KEY,
        )

    def _first(self, owner: Login, *conditions) -> Person | None:
        stmt = select(PersonRow).where(PersonRow.owner == owner.id, *conditions)
        return self.hydrate(self._api.scalar(stmt), owner)

    def slug_for(self, name: str, owner: Login, current_id: str | None = None) -> str:
        def is_taken(slug: str) -> bool:
            stmt = select(PersonRow.id).where(PersonRow.owner == owner.id, PersonRow.slug == slug)
            taken_by = self._api.scalar(stmt)
            return taken_by is not None and taken_by != current_id

        return unique_slug(name, is_taken)

    def create(self, name: str, owner: Login) -> Person:
        now = self._api.now()
        row = PersonRow(
            id=new_id("p"),
            slug=self.slug_for(name, owner),
            name=name,
            owner=owner.id,
            created_at=now,
            updated_at=now,
        )
        s = self._api.session
        s.add(row)
        s.commit()
        return self.hydrate(row, owner)  # type: ignore[return-value]

    def from_id(self, person_id: str, owner: Login) -> Person | None:
        return self._first(owner, PersonRow.id == person_id)

    def from_slug(self, slug: str, owner: Login) -> Person | None:
        return self._first(owner, PersonRow.slug == slug)

    def from_name(self, name: str, owner: Login) -> Person | None:
        return self._first(owner, PersonRow.name == name)

    def all(self, owner: Login) -> list[Person]:
        rows = self._api.scalars(select(PersonRow).where(PersonRow.owner == owner.id))
        return sort_people([self.hydrate(row, owner) for row in rows])

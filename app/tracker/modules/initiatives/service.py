from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.models import InitiativeOrganisation, InitiativeRow, OrganisationRow, PersonRow, Signature
from app.tracker.storage import Asset, remove_quietly
from app.tracker.utils import new_id, sort_initiatives, sort_organisations, sort_people, unique_slug

if TYPE_CHECKING:
    from app.tracker.api import Api
    from app.tracker.modules.logins.service import Login
    from app.tracker.modules.organisations.service import Organisation
    from app.tracker.modules.people.service import Person

logger = logging.getLogger(__name__)

_CONSTRUCTOR_KEY = object()


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


class Initiative:
    def __init__(
        self,
        api: Api,
        id: str,
        slug: str,
        short_name: str,
        full_name: str,
        website: str | None,
        pdf: Asset,
        image: Asset | None,
        deadline: date | None,
        initiated_date: date | None,
        created_at: datetime,
        updated_at: datetime,
        *,
        key: object = None,
    ) -> None:
        if key is not _CONSTRUCTOR_KEY:
            raise TypeError("Initiative() is private; use api.initiatives.create/from_id/from_slug.")
        self._api = api
        self.id = id
        self._slug = slug
        self._short_name = short_name
        self._full_name = full_name
        self._website = website
        self._pdf = pdf
        self._image = image
        self._deadline = deadline
        self._initiated_date = initiated_date
        self._created_at = created_at
        self._updated_at = updated_at
        # None means "not resolved yet"
        self._signatures: list[Person] | None = None
        self._organisations: list[Organisation] | None = None

    def __repr__(self) -> str:
        return f"Initiative({self.id!r}, {self._slug!r})"

    @property
    def slug(self) -> str:
        return self._slug

    @property
    def short_name(self) -> str:
        return self._short_name

    @property
    def full_name(self) -> str:
        return self._full_name

    @property
    def website(self) -> str | None:
        return self._website

    @property
    def pdf(self) -> Asset:
        return self._pdf

    @property
    def image(self) -> Asset | None:
        return self._image

    @property
    def deadline(self) -> date | None:
        return self._deadline

    @property
    def initiated_date(self) -> date | None:
        return self._initiated_date

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def signatures(self) -> list[Person] | None:
        return self._signatures

    @property
    def organisations(self) -> list[Organisation] | None:
        return self._organisations

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "shortName": self.short_name,
            "fullName": self.full_name,
            "website": self.website,
            "pdf": self.pdf.to_json(),
            "image": self.image.to_json() if self.image else None,
            "deadline": _iso(self.deadline),
            "initiatedDate": _iso(self.initiated_date),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "signatures": None if self._signatures is None else [p.to_json() for p in self._signatures],
            "organisations": None
            if self._organisations is None
            else [o.to_json() for o in self._organisations],
        }

    # ---------- Updates ----------
    def _write(self, **values) -> None:
        now = self._api.now()
        s = self._api.session
        s.execute(update(InitiativeRow).where(InitiativeRow.id == self.id).values(updated_at=now, **values))
        s.commit()
        self._updated_at = now

    def update_short_name(self, new_short_name: str) -> None:
        if new_short_name == self.short_name:
            return
        new_slug = self._api.initiatives.slug_for(new_short_name, current_id=self.id)
        self._write(short_name=new_short_name, slug=new_slug)
        self._short_name = new_short_name
        self._slug = new_slug

    def update_full_name(self, new_full_name: str) -> None:
        if new_full_name == self.full_name:
            return
        self._write(full_name=new_full_name)
        self._full_name = new_full_name

    def update_website(self, new_website: str | None) -> None:
        new_website = new_website or None
        if new_website == self.website:
            return
        self._write(website=new_website)
        self._website = new_website

    def update_deadline(self, new_deadline: date | None) -> None:
        if new_deadline == self.deadline:
            return
        self._write(deadline=new_deadline)
        self._deadline = new_deadline

    def update_initiated_date(self, new_initiated_date: date | None) -> None:
        if new_initiated_date == self.initiated_date:
            return
        self._write(initiated_date=new_initiated_date)
        self._initiated_date = new_initiated_date

    def update_pdf(self, new_pdf: Asset) -> None:
        if new_pdf == self.pdf:
            return
        old_pdf = self.pdf
        self._write(pdf=new_pdf.name)
        self._pdf = new_pdf
        remove_quietly(old_pdf)

    def update_image(self, new_image: Asset | None) -> None:
        if new_image == self.image:
            return
        old_image = self.image
        self._write(image=new_image.name if new_image else None)
        self._image = new_image
        remove_quietly(old_image)

    def rm(self) -> None:
        s = self._api.session
        s.execute(delete(InitiativeRow).where(InitiativeRow.id == self.id))
        s.commit()
        logger.info("Deleted initiative %s", self.id)

        remove_quietly(self.image)
        remove_quietly(self.pdf)

    # ---------- Relations ----------
    def resolve_signatures(self, owner: Login) -> list[Person]:
        """Signatures are private: only the people belonging to `owner` are loaded."""
        stmt = (
            select(PersonRow)
            .join(Signature, Signature.person_id == PersonRow.id)
            .where(Signature.initiative_id == self.id, PersonRow.owner == owner.id)
        )
        people = [self._api.people.hydrate(row, owner) for row in self._api.scalars(stmt)]
        self._signatures = sort_people(people)
        return self._signatures

    def resolve_organisations(self) -> list[Organisation]:
        stmt = (
            select(OrganisationRow)
            .join(InitiativeOrganisation, InitiativeOrganisation.organisation_id == OrganisationRow.id)
            .where(InitiativeOrganisation.initiative_id == self.id)
        )
        organisations = [self._api.organisations.hydrate(row) for row in self._api.scalars(stmt)]
        self._organisations = sort_organisations(organisations)
        return self._organisations

    def resolve_signatures_organisations(self, owner: Login) -> None:
        self.resolve_signatures(owner)
        self.resolve_organisations()

    def _require_signatures(self) -> list[Person]:
        if self._signatures is None:
            raise ApiError("Must initialise signatures.")
        return self._signatures

    def _require_organisations(self) -> list[Organisation]:
        if self._organisations is None:
            raise ApiError("Must initialise organisations.")
        return self._organisations

    def add_signature(self, person: Person) -> None:
        signatures = self._require_signatures()
        if self._api.link(Signature, person_id=person.id, initiative_id=self.id):
            self._signatures = sort_people([*signatures, person])

    def remove_signature(self, person: Person) -> None:
        signatures = self._require_signatures()
        self._api.unlink(Signature, Signature.person_id == person.id, Signature.initiative_id == self.id)
        self._signatures = [other for other in signatures if other.id != person.id]

    def add_organisation(self, organisation: Organisation) -> None:
        organisations = self._require_organisations()
        if self._api.link(InitiativeOrganisation, initiative_id=self.id, organisation_id=organisation.id):
            self._organisations = sort_organisations([*organisations, organisation])

    def remove_organisation(self, organisation: Organisation) -> None:
        organisations = self._require_organisations()
        self._api.unlink(
            InitiativeOrganisation,
            InitiativeOrganisation.initiative_id == self.id,
            InitiativeOrganisation.organisation_id == organisation.id,
        )
        self._organisations = [other for other in organisations if other.id != organisation.id]


class InitiativeRepository:
    def __init__(self, api: Api) -> None:
        self._api = api

    def hydrate(self, row: InitiativeRow) -> Initiative:
        pdf = self._api.assets.from_name(row.pdf)
        if pdf is None:
            raise ApiError(f"PDF {row.pdf} does not exist.", kind=ErrorKind.NOT_FOUND)
        image = self._api.assets.from_name(row.image) if row.image else None

        return Initiative(
            self._api,
            row.id,
            row.slug,
            row.short_name,
            row.full_name,
            row.website,
            pdf,
            image,
            row.deadline,
            row.initiated_date,
            row.created_at,
            row.updated_at,
            key=_CONSTRUCTOR_KEY,
        )

    def slug_for(self, short_name: str, current_id: str | None = None) -> str:
        def is_taken(slug: str) -> bool:
            taken_by = self._api.scalar(select(InitiativeRow.id).where(InitiativeRow.slug == slug))
            return taken_by is not None and taken_by != current_id

        return unique_slug(short_name, is_taken)

    def create(
        self,
        short_name: str,
        full_name: str,
        website: str | None,
        pdf: Asset,
        image: Asset | None = None,
        deadline: date | None = None,
        initiated_date: date | None = None,
    ) -> Initiative:
        now = self._api.now()
        row = InitiativeRow(
            id=new_id("i"),
            slug=self.slug_for(short_name),
            short_name=short_name,
            full_name=full_name,
            website=website or None,
            pdf=pdf.name,
            image=image.name if image else None,
            deadline=deadline,
            initiated_date=initiated_date,
            created_at=now,
            updated_at=now,
        )
        s = self._api.session
        s.add(row)
        s.commit()
        logger.info("Created initiative %s (%s)", row.id, row.slug)
        return self.hydrate(row)

    def all(self) -> list[Initiative]:
        return sort_initiatives([self.hydrate(row) for row in self._api.scalars(select(InitiativeRow))])

    def from_id(self, initiative_id: str) -> Initiative | None:
        row = self._api.scalar(select(InitiativeRow).where(InitiativeRow.id == initiative_id))
        return self.hydrate(row) if row is not None else None

    def from_slug(self, slug: str) -> Initiative | None:
        row = self._api.scalar(select(InitiativeRow).where(InitiativeRow.slug == slug))
        return self.hydrate(row) if row is not None else None

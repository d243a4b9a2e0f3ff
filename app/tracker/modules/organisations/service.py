from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from app.tracker.errors import ApiError
from app.tracker.models import InitiativeOrganisation, InitiativeRow, OrganisationRow
from app.tracker.storage import Asset, remove_quietly
from app.tracker.utils import new_id, sort_initiatives, sort_organisations, unique_slug

if TYPE_CHECKING:
    from app.tracker.api import Api
    from app.tracker.modules.initiatives.service import Initiative

logger = logging.getLogger(__name__)

_CONSTRUCTOR_KEY = object()


class Organisation:
    """An organisation backing one or more initiatives."""

    def __init__(
        self,
        api: Api,
        id: str,
        slug: str,
        name: str,
        image: Asset | None,
        website: str | None,
        created_at: datetime,
        updated_at: datetime,
        *,
        key: object = None,
    ) -> None:
        if key is not _CONSTRUCTOR_KEY:
            raise TypeError("Organisation() is private; use api.organisations.create/from_id/from_slug.")
        self._api = api
        self.id = id
        self._slug = slug
        self._name = name
        self._image = image
        self._website = website
        self._created_at = created_at
        self._updated_at = updated_at
        self._initiatives: list[Initiative] | None = None

    def __repr__(self) -> str:
        return f"Organisation({self.id!r}, {self._slug!r})"

    @property
    def slug(self) -> str:
        return self._slug

    @property
    def name(self) -> str:
        return self._name

    @property
    def image(self) -> Asset | None:
        return self._image

    @property
    def website(self) -> str | None:
        return self._website

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def initiatives(self) -> list[Initiative] | None:
        return self._initiatives

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "image": self.image.to_json() if self.image else None,
            "website": self.website,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "initiatives": None if self._initiatives is None else [i.to_json() for i in self._initiatives],
        }

    def _write(self, **values) -> None:
        now = self._api.now()
        s = self._api.session
        s.execute(update(OrganisationRow).where(OrganisationRow.id == self.id).values(updated_at=now, **values))
        s.commit()
        self._updated_at = now

    def update_name(self, new_name: str) -> None:
        if new_name == self.name:
            return
        new_slug = self._api.organisations.slug_for(new_name, current_id=self.id)
        self._write(name=new_name, slug=new_slug)
        self._name = new_name
        self._slug = new_slug

    def update_website(self, new_website: str | None) -> None:
        new_website = new_website or None
        if new_website == self.website:
            return
        self._write(website=new_website)
        self._website = new_website

    def update_image(self, new_image: Asset | None) -> None:
        if new_image == self.image:
            return
        old_image = self.image
        self._write(image=new_image.name if new_image else None)
        self._image = new_image
        remove_quietly(old_image)

    def rm(self) -> None:
        s = self._api.session
        s.execute(delete(OrganisationRow).where(OrganisationRow.id == self.id))
        s.commit()
        logger.info("Deleted organisation %s", self.id)
        remove_quietly(self.image)

    def resolve_initiatives(self) -> list[Initiative]:
        stmt = (
            select(InitiativeRow)
            .join(InitiativeOrganisation, InitiativeOrganisation.initiative_id == InitiativeRow.id)
            .where(InitiativeOrganisation.organisation_id == self.id)
        )
        initiatives = [self._api.initiatives.hydrate(row) for row in self._api.scalars(stmt)]
        self._initiatives = sort_initiatives(initiatives)
        return self._initiatives

    def _require_initiatives(self) -> list[Initiative]:
        if self._initiatives is None:
            raise ApiError("Must initialise initiatives.")
        return self._initiatives

    def add_initiative(self, initiative: Initiative) -> None:
        initiatives = self._require_initiatives()
        if self._api.link(InitiativeOrganisation, initiative_id=initiative.id, organisation_id=self.id):
            self._initiatives = sort_initiatives([*initiatives, initiative])

    def remove_initiative(self, initiative: Initiative) -> None:
        initiatives = self._require_initiatives()
        self._api.unlink(
            InitiativeOrganisation,
            InitiativeOrganisation.initiative_id == initiative.id,
            InitiativeOrganisation.organisation_id == self.id,
        )
        self._initiatives = [other for other in initiatives if other.id != initiative.id]


class OrganisationRepository:
    def __init__(self, api: Api) -> None:
        self._api = api

    def hydrate(self, row: OrganisationRow) -> Organisation:
        image = self._api.assets.from_name(row.image) if row.image else None
        return Organisation(
            self._api,
            row.id,
            row.slug,
            row.name,
            image,
            row.website,
            row.created_at,
            row.updated_at,
            key=_CONSTRUCTOR_KEY,
        )

    def slug_for(self, name: str, current_id: str | None = None) -> str:
        def is_taken(slug: str) -> bool:
            taken_by = self._api.scalar(select(OrganisationRow.id).where(OrganisationRow.slug == slug))
            return taken_by is not None and taken_by != current_id

        return unique_slug(name, is_taken)

    def create(self, name: str, image: Asset | None = None, website: str | None = None) -> Organisation:
        now = self._api.now()
        row = OrganisationRow(
            id=new_id("o"),
            slug=self.slug_for(name),
            name=name,
            image=image.name if image else None,
            website=website or None,
            created_at=now,
            updated_at=now,
        )
        s = self._api.session
        s.add(row)
        s.commit()
        logger.info("Created organisation %s (%s)", row.id, row.slug)
        return self.hydrate(row)

    def all(self) -> list[Organisation]:
        return sort_organisations([self.hydrate(row) for row in self._api.scalars(select(OrganisationRow))])

    def from_id(self, organisation_id: str) -> Organisation | None:
        row = self._api.scalar(select(OrganisationRow).where(OrganisationRow.id == organisation_id))
        return self.hydrate(row) if row is not None else None

    def from_slug(self, slug: str) -> Organisation | None:
        row = self._api.scalar(select(OrganisationRow).where(OrganisationRow.slug == slug))
        return self.hydrate(row) if row is not None else None

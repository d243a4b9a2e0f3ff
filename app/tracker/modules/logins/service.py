from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from werkzeug.security import check_password_hash, generate_password_hash

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.models import LoginRow
from app.tracker.utils import new_id

if TYPE_CHECKING:
    from app.tracker.api import Api

logger = logging.getLogger(__name__)

# scrypt with werkzeug's tuned cost parameters
PASSWORD_HASH_METHOD = "scrypt"

_CONSTRUCTOR_KEY = object()


class Login:
    def __init__(
        self,
        api: Api,
        id: str,
        username: str,
        is_admin: bool,
        created_at: datetime,
        updated_at: datetime,
        *,
        key: object = None,
    ) -> None:
        if key is not _CONSTRUCTOR_KEY:
            raise TypeError("Login() is private; use api.logins.create/from_id/from_credentials.")
        self._api = api
        self.id = id
        self._username = username
        self._is_admin = is_admin
        self._created_at = created_at
        self._updated_at = updated_at

    def __repr__(self) -> str:
        return f"Login({self.id!r}, {self._username!r})"

    @property
    def username(self) -> str:
        return self._username

    @property
    def is_admin(self) -> bool:
        return self._is_admin

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "isAdmin": self.is_admin,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def _write(self, **values) -> datetime:
        now = self._api.now()
        s = self._api.session
        s.execute(update(LoginRow).where(LoginRow.id == self.id).values(updated_at=now, **values))
        s.commit()
        self._updated_at = now
        return now

    def verify_password(self, password: str) -> bool:
        row = self._api.session.scalars(select(LoginRow.password_hash).where(LoginRow.id == self.id)).one_or_none()
        return row is not None and check_password_hash(row, password)

    def update_password(self, new_password: str) -> None:
        self._write(password_hash=generate_password_hash(new_password, method=PASSWORD_HASH_METHOD))
        logger.info("Password changed for login %s", self.id)

    def update_username(self, new_username: str) -> None:
        if new_username == self.username:
            return
        other = self._api.logins.from_username(new_username)
        if other is not None and other.id != self.id:
            raise ApiError(f'User with username "{new_username}" already exists.', kind=ErrorKind.CONFLICT)
        self._write(username=new_username)
        self._username = new_username

    def update_is_admin(self, is_admin: bool) -> None:
        if is_admin == self.is_admin:
            return
        self._write(is_admin=is_admin)
        self._is_admin = is_admin

    def rm(self) -> None:
        """Deletes the login; sessions and people go with it (FK cascade)."""
        s = self._api.session
        s.execute(delete(LoginRow).where(LoginRow.id == self.id))
        s.commit()


class LoginRepository:
    def __init__(self, api: Api) -> None:
        self._api = api

    def hydrate(self, row: LoginRow | None) -> Login | None:
        if row is None:
            return None
        return Login(
            self._api,
            row.id,
            row.username,
            bool(row.is_admin),
            row.created_at,
            row.updated_at,
            key=_CONSTRUCTOR_KEY,
        )

    def _row_by_username(self, username: str) -> LoginRow | None:
        stmt = select(LoginRow).where(func.lower(LoginRow.username) == username.lower())
        return self._api.scalar(stmt)

    def from_id(self, login_id: str) -> Login | None:
        return self.hydrate(self._api.scalar(select(LoginRow).where(LoginRow.id == login_id)))

    def from_username(self, username: str) -> Login | None:
        return self.hydrate(self._row_by_username(username))

    def all(self) -> list[Login]:
        rows = self._api.scalars(select(LoginRow).order_by(func.lower(LoginRow.username)))
        return [self.hydrate(r) for r in rows]  # type: ignore[misc]

    def create(self, username: str, password: str, is_admin: bool = False) -> Login:
        if self._row_by_username(username) is not None:
            raise ApiError(f'User with username "{username}" already exists.', kind=ErrorKind.CONFLICT)

        now = self._api.now()
        row = LoginRow(
            id=new_id("l"),
            username=username,
            password_hash=generate_password_hash(password, method=PASSWORD_HASH_METHOD),
            is_admin=is_admin,
            created_at=now,
            updated_at=now,
        )
        s = self._api.session
        s.add(row)
        s.commit()
        logger.info("Created %s %s", "admin login" if is_admin else "login", row.id)
        return self.hydrate(row)  # type: ignore[return-value]

    def from_credentials(self, username: str, password: str) -> Login | None:
        row = self._row_by_username(username)
        if row is None or not check_password_hash(row.password_hash, password):
            return None
        return self.hydrate(row)

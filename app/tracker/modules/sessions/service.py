from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from app.tracker.models import SessionRow

if TYPE_CHECKING:
    from app.tracker.api import Api
    from app.tracker.modules.logins.service import Login

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(days=7)
# Renew once less than half of the lifetime remains.
RENEW_THRESHOLD = SESSION_TTL * 0.5

_CONSTRUCTOR_KEY = object()


def new_session_id() -> str:
    return "s-" + secrets.token_urlsafe(96)


class Session:
    """A login session. The id doubles as the cookie value."""

    def __init__(
        self,
        api: Api,
        id: str,
        user_id: str,
        expires: datetime,
        created_at: datetime,
        *,
        key: object = None,
    ) -> None:
        if key is not _CONSTRUCTOR_KEY:
            raise TypeError("Session() is private; use api.sessions.create/from_id.")
        self._api = api
        self.id = id
        self.user_id = user_id
        self.expires = expires
        self.created_at = created_at

    def __repr__(self) -> str:
        return f"Session(user_id={self.user_id!r}, expires={self.expires.isoformat()})"

    def is_expired(self) -> bool:
        return self.expires < self._api.now()

    def should_renew(self) -> bool:
        if self.is_expired():
            return False
        return self.expires - self._api.now() < RENEW_THRESHOLD

    def login(self) -> Login | None:
        return self._api.logins.from_id(self.user_id)

    def renew(self) -> Session | None:
        """
        New session for the same login. The current one stays valid until the
        caller invalidates it, so an in-flight request is never logged out.
        """
        if self.is_expired():
            return None
        login = self.login()
        if login is None:
            return None
        return self._api.sessions.create(login)

    def invalidate(self) -> None:
        s = self._api.session
        s.execute(delete(SessionRow).where(SessionRow.id == self.id))
        s.commit()


class SessionRepository:
    def __init__(self, api: Api) -> None:
        self._api = api

    def hydrate(self, row: SessionRow) -> Session:
        return Session(self._api, row.id, row.user_id, row.expires, row.created_at, key=_CONSTRUCTOR_KEY)

    def create(self, login: Login) -> Session:
        now = self._api.now()
        row = SessionRow(id=new_session_id(), user_id=login.id, expires=now + SESSION_TTL, created_at=now)
        s = self._api.session
        s.add(row)
        s.commit()
        return self.hydrate(row)

    def from_id(self, session_id: str) -> Session | None:
        """None when the session is unknown or expired."""
        if not session_id:
            return None
        row = self._api.scalar(select(SessionRow).where(SessionRow.id == session_id))
        if row is None:
            return None
        session = self.hydrate(row)
        if session.is_expired():
            return None
        return session

    def remove_expired(self) -> int:
        s = self._api.session
        result = s.execute(delete(SessionRow).where(SessionRow.expires < self._api.now()))
        s.commit()
        count = result.rowcount or 0
        if count:
            logger.info("Removed %d expired sessions", count)
        return count

"""Tests for login sessions."""
from datetime import timedelta

import pytest

from app.tracker.modules.sessions.service import SESSION_TTL, Session


def test_create_and_lookup(api, login, clock):
    session = api.sessions.create(login)
    assert session.id.startswith("s-")
    assert len(session.id) > 100
    assert session.expires == clock.now + SESSION_TTL

    found = api.sessions.from_id(session.id)
    assert found.user_id == login.id
    assert found.login().id == login.id


def test_ids_are_unique(api, login):
    assert api.sessions.create(login).id != api.sessions.create(login).id


def test_unknown_id(api):
    assert api.sessions.from_id("s-unknown") is None
    assert api.sessions.from_id("") is None


def test_fresh_session_does_not_renew(api, login, clock):
    session = api.sessions.create(login)
    clock.advance(timedelta(days=1))
    assert not session.should_renew()


def test_renew_after_half_ttl(api, login, clock):
    session = api.sessions.create(login)
    clock.advance(timedelta(days=4))
    assert session.should_renew()

    renewed = session.renew()
    assert renewed is not None
    assert renewed.id != session.id
    assert renewed.user_id == login.id
    assert renewed.expires == clock.now + SESSION_TTL
    # the old session is left for the caller to invalidate
    assert api.sessions.from_id(session.id) is not None


def test_expired_session(api, login, clock):
    session = api.sessions.create(login)
    clock.advance(SESSION_TTL + timedelta(seconds=1))

    assert session.is_expired()
    assert not session.should_renew()
    assert session.renew() is None
    assert api.sessions.from_id(session.id) is None


def test_invalidate(api, login):
    session = api.sessions.create(login)
    session.invalidate()
    assert api.sessions.from_id(session.id) is None


def test_remove_expired(api, login, clock):
    old = api.sessions.create(login)
    clock.advance(timedelta(days=5))
    recent = api.sessions.create(login)
    clock.advance(timedelta(days=3))

    assert api.sessions.remove_expired() == 1
    # back in time: only the recent session survived the sweep
    clock.advance(timedelta(days=-8))
    assert api.sessions.from_id(old.id) is None
    assert api.sessions.from_id(recent.id) is not None


def test_constructor_is_private(api, login, clock):
    with pytest.raises(TypeError):
        Session(api, "s-x", login.id, clock.now, clock.now)

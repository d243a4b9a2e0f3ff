from __future__ import annotations

from flask import Blueprint, g, request

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.rbac import require_login
from app.tracker.routes import request_api, success
from app.tracker.validators import reject_unknown_keys, request_body, validate_name

bp = Blueprint("people", __name__)

FIELDS = ("name",)


def _get_or_404(person_id: str):
    # Scoped to the current login: other logins' people look like missing ones.
    person = request_api().people.from_id(person_id, g.current_login)
    if person is None:
        raise ApiError(f'Person "{person_id}" does not exist.', kind=ErrorKind.NOT_FOUND)
    return person


@bp.get("/people")
@require_login
def people_list():
    people = request_api().people.all(g.current_login)
    for person in people:
        person.resolve_signatures()
    return success([p.to_json() for p in people])


@bp.get("/person/<slug>")
@require_login
def person_detail(slug: str):
    person = request_api().people.from_slug(slug, g.current_login)
    if person is None:
        raise ApiError(f'Person "{slug}" does not exist.', kind=ErrorKind.NOT_FOUND)
    person.resolve_signatures()
    return success(person.to_json())


@bp.put("/person")
@require_login
def person_create():
    body = request_body(request)
    reject_unknown_keys(body, FIELDS)
    name = validate_name(body.get("name"), "Name")

    person = request_api().people.create(name, g.current_login)
    person.resolve_signatures()
    return success(person.to_json(), 201)


@bp.patch("/person/<person_id>")
@require_login
def person_update(person_id: str):
    person = _get_or_404(person_id)
    body = request_body(request)
    reject_unknown_keys(body, FIELDS)
    if "name" in body:
        person.update_name(validate_name(body["name"], "Name"))

    person.resolve_signatures()
    return success(person.to_json())


@bp.delete("/person/<person_id>")
@require_login
def person_delete(person_id: str):
    _get_or_404(person_id).rm()
    return success()

from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.rbac import require_admin
from app.tracker.routes import request_api, success
from app.tracker.storage import IMAGE, remove_quietly
from app.tracker.validators import (
    reject_unknown_keys,
    request_body,
    validate_name,
    validate_optional_file,
    validate_optional_website,
)

bp = Blueprint("organisations", __name__)

FIELDS = ("name", "image", "website")


def _get_or_404(organisation_id: str):
    organisation = request_api().organisations.from_id(organisation_id)
    if organisation is None:
        raise ApiError(f'Organisation "{organisation_id}" does not exist.', kind=ErrorKind.NOT_FOUND)
    return organisation


@bp.get("/organisations")
def organisations_list():
    organisations = request_api().organisations.all()
    for organisation in organisations:
        organisation.resolve_initiatives()
    return success([o.to_json() for o in organisations])


@bp.get("/organisation/<slug>")
def organisation_detail(slug: str):
    organisation = request_api().organisations.from_slug(slug)
    if organisation is None:
        raise ApiError(f'Organisation "{slug}" does not exist.', kind=ErrorKind.NOT_FOUND)
    organisation.resolve_initiatives()
    return success(organisation.to_json())


@bp.put("/organisation")
@require_admin
def organisation_create():
    api = request_api()
    body = request_body(request, file_keys=("image",))
    reject_unknown_keys(body, FIELDS)

    name = validate_name(body.get("name"), "Name")
    website = validate_optional_website(body.get("website"))
    image_source = validate_optional_file(body.get("image"), "image")

    image = api.assets.create(IMAGE, image_source) if image_source is not None else None
    try:
        organisation = api.organisations.create(name, image, website)
    except Exception:
        remove_quietly(image)
        raise

    current_app.logger.info("Organisation %s created by %s", organisation.id, g.current_login.id)
    organisation.resolve_initiatives()
    return success(organisation.to_json(), 201)


@bp.patch("/organisation/<organisation_id>")
@require_admin
def organisation_update(organisation_id: str):
    api = request_api()
    organisation = _get_or_404(organisation_id)
    body = request_body(request, file_keys=("image",))
    reject_unknown_keys(body, FIELDS)

    name = validate_name(body["name"], "Name") if "name" in body else None
    website = validate_optional_website(body["website"]) if "website" in body else None
    image_source = validate_optional_file(body["image"], "image") if "image" in body else None

    # A rejected image must not leave a half-applied rename behind.
    new_image = api.assets.create(IMAGE, image_source) if image_source is not None else None

    if name is not None:
        organisation.update_name(name)
    if "website" in body:
        organisation.update_website(website)
    if "image" in body:
        organisation.update_image(new_image)

    organisation.resolve_initiatives()
    return success(organisation.to_json())


@bp.delete("/organisation/<organisation_id>")
@require_admin
def organisation_delete(organisation_id: str):
    organisation = _get_or_404(organisation_id)
    organisation.rm()
    current_app.logger.info("Organisation %s deleted by %s", organisation_id, g.current_login.id)
    return success()

from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.rbac import require_admin, require_login
from app.tracker.routes import request_api, success
from app.tracker.storage import IMAGE, PDF, remove_quietly
from app.tracker.validators import (
    reject_unknown_keys,
    request_body,
    validate_file,
    validate_optional_date,
    validate_optional_file,
    validate_optional_website,
    validate_text,
)

bp = Blueprint("initiatives", __name__)

FIELDS = ("shortName", "fullName", "website", "pdf", "image", "deadline", "initiatedDate")
NAME_MIN_LENGTH = 10


def _resolve(initiative) -> None:
    login = getattr(g, "current_login", None)
    if login is not None:
        initiative.resolve_signatures_organisations(login)
    else:
        initiative.resolve_organisations()


def _get_or_404(initiative_id: str):
    initiative = request_api().initiatives.from_id(initiative_id)
    if initiative is None:
        raise ApiError(f'Initiative "{initiative_id}" does not exist.', kind=ErrorKind.NOT_FOUND)
    return initiative


# ---------- Read ----------
@bp.get("/initiatives")
def initiatives_list():
    initiatives = request_api().initiatives.all()
    for initiative in initiatives:
        _resolve(initiative)
    return success([i.to_json() for i in initiatives])


@bp.get("/initiative/<slug>")
def initiative_detail(slug: str):
    initiative = request_api().initiatives.from_slug(slug)
    if initiative is None:
        raise ApiError(f'Initiative "{slug}" does not exist.', kind=ErrorKind.NOT_FOUND)
    _resolve(initiative)
    return success(initiative.to_json())


# ---------- Create ----------
@bp.put("/initiative")
@require_admin
def initiative_create():
    api = request_api()
    body = request_body(request, file_keys=("pdf", "image"))
    reject_unknown_keys(body, FIELDS)

    short_name = validate_text(body.get("shortName"), "Short Name", min_length=NAME_MIN_LENGTH)
    full_name = validate_text(body.get("fullName"), "Full Name", min_length=NAME_MIN_LENGTH)
    website = validate_optional_website(body.get("website"))
    deadline = validate_optional_date(body.get("deadline"), "deadline")
    initiated_date = validate_optional_date(body.get("initiatedDate"), "initiatedDate")
    pdf_source = validate_file(body.get("pdf"), "pdf")
    image_source = validate_optional_file(body.get("image"), "image")

    pdf = api.assets.create(PDF, pdf_source)
    image = None
    try:
        if image_source is not None:
            image = api.assets.create(IMAGE, image_source)
        initiative = api.initiatives.create(short_name, full_name, website, pdf, image, deadline, initiated_date)
    except Exception:
        remove_quietly(pdf)
        remove_quietly(image)
        raise

    current_app.logger.info("Initiative %s created by %s", initiative.id, g.current_login.id)
    _resolve(initiative)
    return success(initiative.to_json(), 201)


# ---------- Update ----------
@bp.patch("/initiative/<initiative_id>")
@require_admin
def initiative_update(initiative_id: str):
    api = request_api()
    initiative = _get_or_404(initiative_id)
    body = request_body(request, file_keys=("pdf", "image"))
    reject_unknown_keys(body, FIELDS)

    # Validate everything before touching the store.
    changes: dict = {}
    if "shortName" in body:
        changes["shortName"] = validate_text(body["shortName"], "Short Name", min_length=NAME_MIN_LENGTH)
    if "fullName" in body:
        changes["fullName"] = validate_text(body["fullName"], "Full Name", min_length=NAME_MIN_LENGTH)
    if "website" in body:
        changes["website"] = validate_optional_website(body["website"])
    if "deadline" in body:
        changes["deadline"] = validate_optional_date(body["deadline"], "deadline")
    if "initiatedDate" in body:
        changes["initiatedDate"] = validate_optional_date(body["initiatedDate"], "initiatedDate")
    if "pdf" in body:
        changes["pdf"] = validate_file(body["pdf"], "pdf")
    if "image" in body:
        changes["image"] = validate_optional_file(body["image"], "image")

    # Store new files before any row changes so a rejected upload leaves the initiative untouched.
    new_pdf = new_image = None
    try:
        if "pdf" in changes:
            new_pdf = api.assets.create(PDF, changes["pdf"])
        if changes.get("image") is not None:
            new_image = api.assets.create(IMAGE, changes["image"])
    except Exception:
        remove_quietly(new_pdf)
        raise

    if "shortName" in changes:
        initiative.update_short_name(changes["shortName"])
    if "fullName" in changes:
        initiative.update_full_name(changes["fullName"])
    if "website" in changes:
        initiative.update_website(changes["website"])
    if "deadline" in changes:
        initiative.update_deadline(changes["deadline"])
    if "initiatedDate" in changes:
        initiative.update_initiated_date(changes["initiatedDate"])
    if new_pdf is not None:
        initiative.update_pdf(new_pdf)
    if "image" in changes:
        initiative.update_image(new_image)

    _resolve(initiative)
    return success(initiative.to_json())


# ---------- Delete ----------
@bp.delete("/initiative/<initiative_id>")
@require_admin
def initiative_delete(initiative_id: str):
    initiative = _get_or_404(initiative_id)
    initiative.rm()
    current_app.logger.info("Initiative %s deleted by %s", initiative_id, g.current_login.id)
    return success()


# ---------- Signatures ----------
def _initiative_and_person(initiative_id: str, person_id: str):
    initiative = _get_or_404(initiative_id)
    person = request_api().people.from_id(person_id, g.current_login)
    if person is None:
        raise ApiError(f'Person "{person_id}" does not exist.', kind=ErrorKind.NOT_FOUND)
    initiative.resolve_signatures_organisations(g.current_login)
    return initiative, person


@bp.put("/initiative/<initiative_id>/signature/<person_id>")
@require_login
def signature_add(initiative_id: str, person_id: str):
    initiative, person = _initiative_and_person(initiative_id, person_id)
    initiative.add_signature(person)
    return success(initiative.to_json())


@bp.delete("/initiative/<initiative_id>/signature/<person_id>")
@require_login
def signature_remove(initiative_id: str, person_id: str):
    initiative, person = _initiative_and_person(initiative_id, person_id)
    initiative.remove_signature(person)
    return success(initiative.to_json())


# ---------- Organisations ----------
def _initiative_and_organisation(initiative_id: str, organisation_id: str):
    initiative = _get_or_404(initiative_id)
    organisation = request_api().organisations.from_id(organisation_id)
    if organisation is None:
        raise ApiError(f'Organisation "{organisation_id}" does not exist.', kind=ErrorKind.NOT_FOUND)
    initiative.resolve_signatures_organisations(g.current_login)
    return initiative, organisation


@bp.put("/initiative/<initiative_id>/organisation/<organisation_id>")
@require_admin
def organisation_add(initiative_id: str, organisation_id: str):
    initiative, organisation = _initiative_and_organisation(initiative_id, organisation_id)
    initiative.add_organisation(organisation)
    return success(initiative.to_json())


@bp.delete("/initiative/<initiative_id>/organisation/<organisation_id>")
@require_admin
def organisation_remove(initiative_id: str, organisation_id: str):
    initiative, organisation = _initiative_and_organisation(initiative_id, organisation_id)
    initiative.remove_organisation(organisation)
    return success(initiative.to_json())

"""Tests for initiatives, their assets and relations."""
import logging
from datetime import date, timedelta

import pytest

from app.tracker.errors import ApiError, ErrorKind
from app.tracker.modules.initiatives.service import Initiative
from app.tracker.storage import PDF
from conftest import PDF_BYTES


def test_create(api, make_pdf, make_image, clock):
    pdf, image = make_pdf(), make_image()
    initiative = api.initiatives.create(
        "Clean Air Act",
        "Popular initiative for clean air",
        "https://example.com/",
        pdf,
        image,
        date(2026, 5, 1),
        date(2025, 1, 15),
    )
    assert initiative.id.startswith("i-")
    assert initiative.slug == "clean-air-act"
    assert initiative.pdf == pdf
    assert initiative.image == image
    assert initiative.created_at == initiative.updated_at == clock.now

    data = api.initiatives.from_slug("clean-air-act").to_json()
    assert data["shortName"] == "Clean Air Act"
    assert data["fullName"] == "Popular initiative for clean air"
    assert data["website"] == "https://example.com/"
    assert data["pdf"] == pdf.name
    assert data["image"] == image.name
    assert data["deadline"] == "2026-05-01"
    assert data["initiatedDate"] == "2025-01-15"
    assert data["createdAt"] == clock.now.isoformat()
    assert data["signatures"] is None
    assert data["organisations"] is None


def test_empty_website_stored_as_none(api, make_initiative):
    assert make_initiative(website="").website is None


def test_slug_sequence(api, make_initiative):
    a = make_initiative("Same Name")
    b = make_initiative("same name")
    c = make_initiative("Different")
    assert (a.slug, b.slug) == ("same-name", "same-name-1")

    c.update_short_name("SAME NAME")
    assert c.slug == "same-name-2"
    assert api.initiatives.from_slug("same-name-2").id == c.id

    c.update_short_name("Same  Name")
    assert c.slug == "same-name-2"


def test_updates_are_noops_when_unchanged(api, make_initiative, clock):
    initiative = make_initiative(deadline=date(2026, 1, 1))
    before = initiative.updated_at
    clock.advance(timedelta(minutes=1))

    initiative.update_short_name(initiative.short_name)
    initiative.update_full_name(initiative.full_name)
    initiative.update_website(None)
    initiative.update_deadline(date(2026, 1, 1))
    initiative.update_initiated_date(None)
    initiative.update_pdf(initiative.pdf)
    initiative.update_image(None)

    assert initiative.updated_at == before
    assert api.initiatives.from_id(initiative.id).updated_at == before


def test_updates_persist_and_bump_updated_at(api, make_initiative, clock):
    initiative = make_initiative()
    created = initiative.created_at

    clock.advance(timedelta(days=1))
    initiative.update_full_name("A much longer full name")
    initiative.update_website("https://example.org/")
    initiative.update_deadline(date(2027, 2, 3))
    initiative.update_initiated_date(date(2024, 12, 1))

    reloaded = api.initiatives.from_id(initiative.id)
    assert reloaded.full_name == "A much longer full name"
    assert reloaded.website == "https://example.org/"
    assert reloaded.deadline == date(2027, 2, 3)
    assert reloaded.initiated_date == date(2024, 12, 1)
    assert reloaded.updated_at == clock.now
    assert reloaded.created_at == created


def test_replacing_pdf_removes_old_file(api, make_initiative):
    initiative = make_initiative()
    old = initiative.pdf
    new = api.assets.create_from_bytes(PDF, PDF_BYTES)

    initiative.update_pdf(new)

    assert api.initiatives.from_id(initiative.id).pdf == new
    assert api.assets.from_name(old.name) is None
    assert api.assets.from_name(new.name) == new


def test_replacing_image_survives_missing_old_file(api, make_initiative, make_image, caplog):
    first = make_image()
    initiative = make_initiative(image=first)
    first.rm()

    second = make_image()
    with caplog.at_level(logging.WARNING, logger="app.tracker.storage"):
        initiative.update_image(second)

    assert api.initiatives.from_id(initiative.id).image == second
    assert "Could not remove asset" in caplog.text


def test_clearing_image(api, make_initiative, make_image):
    image = make_image()
    initiative = make_initiative(image=image)
    initiative.update_image(None)
    assert api.initiatives.from_id(initiative.id).image is None
    assert api.assets.from_name(image.name) is None


def test_rm_deletes_row_and_files(api, make_initiative, make_image):
    initiative = make_initiative(image=make_image())
    pdf, image = initiative.pdf, initiative.image

    initiative.rm()

    assert api.initiatives.from_id(initiative.id) is None
    assert api.assets.from_name(pdf.name) is None
    assert api.assets.from_name(image.name) is None


def test_rm_with_files_already_gone(api, make_initiative):
    initiative = make_initiative()
    initiative.pdf.rm()
    initiative.rm()
    assert api.initiatives.from_slug(initiative.slug) is None


def test_missing_pdf_on_read(api, make_initiative):
    initiative = make_initiative()
    initiative.pdf.rm()
    with pytest.raises(ApiError) as exc:
        api.initiatives.from_id(initiative.id)
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_all_sorted_latest_deadline_first(api, make_initiative):
    make_initiative("No Deadline")
    make_initiative("Soon", deadline=date(2025, 6, 1))
    make_initiative("Later", deadline=date(2026, 6, 1))
    assert [i.short_name for i in api.initiatives.all()] == ["Later", "Soon", "No Deadline"]


def test_relations_require_resolution(api, login, make_initiative):
    initiative = make_initiative()
    person = api.people.create("Jane Doe", login)
    organisation = api.organisations.create("Green Org")

    with pytest.raises(ApiError, match="Must initialise"):
        initiative.add_signature(person)
    with pytest.raises(ApiError, match="Must initialise"):
        initiative.remove_signature(person)
    with pytest.raises(ApiError, match="Must initialise"):
        initiative.add_organisation(organisation)
    with pytest.raises(ApiError, match="Must initialise"):
        initiative.remove_organisation(organisation)


def test_signatures_are_idempotent_and_sorted(api, login, make_initiative):
    initiative = make_initiative()
    zoe = api.people.create("Zoe Zed", login)
    adam = api.people.create("Adam Ant", login)
    initiative.resolve_signatures_organisations(login)

    initiative.add_signature(zoe)
    initiative.add_signature(adam)
    initiative.add_signature(zoe)
    assert [p.name for p in initiative.signatures] == ["Adam Ant", "Zoe Zed"]

    initiative.remove_signature(zoe)
    initiative.remove_signature(zoe)
    assert [p.name for p in initiative.signatures] == ["Adam Ant"]
    assert [p.id for p in api.initiatives.from_id(initiative.id).resolve_signatures(login)] == [adam.id]


def test_signatures_only_show_owners_people(api, login, other_login, make_initiative):
    initiative = make_initiative()
    mine = api.people.create("Jane Doe", login)
    theirs = api.people.create("John Roe", other_login)
    for owner, person in ((login, mine), (other_login, theirs)):
        initiative.resolve_signatures(owner)
        initiative.add_signature(person)

    assert [p.id for p in initiative.resolve_signatures(login)] == [mine.id]
    assert [p.id for p in initiative.resolve_signatures(other_login)] == [theirs.id]


def test_organisations(api, make_initiative):
    initiative = make_initiative()
    beta = api.organisations.create("Beta Org")
    alpha = api.organisations.create("Alpha Org")
    initiative.resolve_organisations()

    initiative.add_organisation(beta)
    initiative.add_organisation(alpha)
    initiative.add_organisation(beta)
    assert [o.name for o in initiative.organisations] == ["Alpha Org", "Beta Org"]

    data = initiative.to_json()
    assert [o["name"] for o in data["organisations"]] == ["Alpha Org", "Beta Org"]
    assert data["organisations"][0]["initiatives"] is None

    initiative.remove_organisation(alpha)
    assert [o.id for o in api.initiatives.from_id(initiative.id).resolve_organisations()] == [beta.id]


def test_rm_removes_links(api, login, make_initiative):
    initiative = make_initiative()
    organisation = api.organisations.create("Green Org")
    person = api.people.create("Jane Doe", login)
    initiative.resolve_signatures_organisations(login)
    initiative.add_organisation(organisation)
    initiative.add_signature(person)

    initiative.rm()

    assert organisation.resolve_initiatives() == []
    assert person.resolve_signatures() == []


def test_constructor_is_private(api, make_pdf, clock):
    with pytest.raises(TypeError):
        Initiative(api, "i-x", "x", "X", "X", None, make_pdf(), None, None, None, clock.now, clock.now)

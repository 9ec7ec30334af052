import json

import pytest

from app.core import drafts
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.municipi import Municipi


@pytest.fixture()
def municipi(db):
    mun = Municipi(nom="Olot")
    db.add(mun)
    db.commit()
    return mun


def general(titol="Orígens de la vila", **extra):
    values = {"titol": titol, "resum": "Breu", "cos_text": "Text llarg", "tags_json": '["medieval"]'}
    values.update(extra)
    return values


# ---------------------- validators ----------------------

def test_tags_are_deduplicated_and_capped():
    assert drafts.normalize_tags('["Mar", "mar", " ", "Port"]') == '["Mar", "Port"]'
    assert drafts.normalize_tags("") is None
    assert drafts.normalize_tags("[]") is None
    with pytest.raises(ValidationError):
        drafts.normalize_tags('{"a": 1}')
    with pytest.raises(ValidationError):
        drafts.normalize_tags(json.dumps([f"t{i}" for i in range(11)]))
    with pytest.raises(ValidationError):
        drafts.normalize_tags(json.dumps(["x" * 41]))


def test_sources_need_label_and_http_url():
    assert drafts.normalize_sources("Arxiu | https://arxiu.cat/a\n\n") == "Arxiu|https://arxiu.cat/a"
    for bad in ("no separator", "|https://x.cat", "Arxiu|ftp://x.cat", "Arxiu|https://" + "x" * 200):
        with pytest.raises(ValidationError):
            drafts.normalize_sources(bad)


def test_title_rules():
    with pytest.raises(ValidationError):
        drafts.validate_general({"titol": ""}, strict=True)
    assert drafts.validate_general({"titol": ""}, strict=False)["titol"] is None
    with pytest.raises(ValidationError):
        drafts.validate_general({"titol": "ab"}, strict=False)
    with pytest.raises(ValidationError):
        drafts.validate_general({"titol": "x" * 121}, strict=False)
    with pytest.raises(ValidationError):
        drafts.validate_general({"titol": "Bona", "resum": "x" * 601}, strict=False)


def test_event_years():
    out = drafts.validate_fet({"titol": "Riuada", "any_inici": "1940", "any_fi": 1941}, strict=True)
    assert (out["any_inici"], out["any_fi"]) == (1940, 1941)
    for values in ({"any_inici": 1950, "any_fi": 1940}, {"any_inici": 2101}, {"any_fi": "abc"}):
        with pytest.raises(ValidationError):
            drafts.validate_fet(values, strict=False)


def test_historic_event_rules():
    out = drafts.validate_event({
        "titol": "Pesta de 1650",
        "tipus": " Pesta ",
        "data_inici": "1650-03-01",
        "data_fi": "1651-01-15",
        "precisio": "mes",
    }, strict=True)
    assert (out["tipus"], out["precisio"], out["data_fi"]) == ("pesta", "mes", "1651-01-15")
    assert drafts.validate_event({}, strict=False)["tipus"] is None

    bad = (
        {"tipus": "festa"},
        {"precisio": "segle"},
        {"data_inici": "1650"},
        {"data_inici": "1651-01-01", "data_fi": "1650-12-31"},
        {"resum": "x" * 501},
        {"descripcio": "x" * 5001},
        {"fonts": "x" * 2001},
    )
    for values in bad:
        with pytest.raises(ValidationError):
            drafts.validate_event(values, strict=False)
    with pytest.raises(ValidationError):
        drafts.validate_event({"titol": "Pesta de 1650"}, strict=True)


def test_map_data_limits():
    drafts.validate_map_json(drafts.empty_map_json())
    drafts.validate_map_json('{"layers": {"toponyms": [{"points": ' + json.dumps([[0, 0]] * 500) + "}]}}")

    too_many_points = {"layers": {"streets": [{"points": [[0, 0]] * 201}]}}
    too_many_features = {"layers": {"houses": [{}] * 1500, "elements": [{}] * 501}}
    for payload in ("", "[]", "not json", json.dumps(too_many_points), json.dumps(too_many_features),
                    json.dumps({"layers": {"rivers": "river"}})):
        with pytest.raises(ValidationError):
            drafts.validate_map_json(payload)

    assert drafts.validate_mapa({"titol": "Plànol", "data_json": {"layers": {}}}, True)["data_json"] == '{"layers": {}}'


# ---------------------- lifecycle ----------------------

def test_draft_is_reused_until_forced(db, municipi, make_user):
    user = make_user()
    historia = drafts.ensure_historia(db, municipi.id)
    kind = drafts.HISTORIA_GENERAL

    first = drafts.create_draft(db, kind, historia.id, user.id)
    assert (first.version, first.status, first.lock_version) == (1, "draft", 0)
    assert drafts.create_draft(db, kind, historia.id, user.id).id == first.id
    assert drafts.create_draft(db, kind, historia.id, user.id, force_new=True).version == 2


def test_submit_approve_publishes(db, municipi, make_user):
    author = make_user()
    admin = make_user(is_admin=True)
    historia = drafts.ensure_historia(db, municipi.id)
    kind = drafts.HISTORIA_GENERAL

    draft = drafts.create_draft(db, kind, historia.id, author.id)
    drafts.update_draft(db, kind, draft.id, author, general(), 0)
    drafts.submit(db, kind, draft.id, author)
    assert [v.id for v in drafts.list_pending(db, kind)] == [draft.id]

    with pytest.raises(ForbiddenError):
        drafts.approve(db, kind, draft.id, author)
    published = drafts.approve(db, kind, draft.id, admin, notes="  ok ")

    assert (published.status, published.moderated_by, published.moderation_notes) == ("publicat", admin.id, "ok")
    db.refresh(historia)
    assert drafts.current_version(db, kind, historia).id == draft.id

    # the next draft starts from the published text
    second = drafts.create_draft(db, kind, historia.id, author.id)
    assert (second.version, second.titol, second.tags_json) == (2, "Orígens de la vila", '["medieval"]')


def test_historic_event_goes_through_moderation(db, municipi, make_user):
    author = make_user()
    admin = make_user(is_admin=True)
    kind = drafts.get_kind("event")
    event = drafts.create_event(db, municipi.id, author.id)

    draft = drafts.create_draft(db, kind, event.id, author.id)
    assert (draft.event_id, draft.status) == (event.id, "draft")
    drafts.update_draft(db, kind, draft.id, author, {
        "titol": "Aiguat de 1940",
        "tipus": "inundacio",
        "data_inici": "1940-10-17",
        "precisio": "dia",
        "cos_text": "ignored",
    }, 0)

    assert drafts.submit(db, kind, draft.id, author).status == "pendent"
    assert [v.id for v in drafts.list_pending(db, kind)] == [draft.id]
    assert drafts.approve(db, kind, draft.id, admin).status == "publicat"

    db.refresh(event)
    current = drafts.current_version(db, kind, event)
    assert (current.id, current.titol, current.tipus) == (draft.id, "Aiguat de 1940", "inundacio")

    with pytest.raises(NotFoundError):
        drafts.create_event(db, 9999, author.id)


def test_incomplete_draft_cannot_be_submitted(db, municipi, make_user):
    author = make_user()
    historia = drafts.ensure_historia(db, municipi.id)
    draft = drafts.create_draft(db, drafts.HISTORIA_GENERAL, historia.id, author.id)
    with pytest.raises(ValidationError):
        drafts.submit(db, drafts.HISTORIA_GENERAL, draft.id, author)


def test_illegal_transitions(db, municipi, make_user):
    author = make_user()
    admin = make_user(is_admin=True)
    fet = drafts.create_fet(db, municipi.id, author.id)
    kind = drafts.HISTORIA_FET
    draft = drafts.create_draft(db, kind, fet.id, author.id)

    with pytest.raises(ConflictError):
        drafts.approve(db, kind, draft.id, admin)

    drafts.update_draft(db, kind, draft.id, author, {"titol": "La riuada", "any_inici": 1940}, 0)
    drafts.submit(db, kind, draft.id, author)
    with pytest.raises(ConflictError):
        drafts.update_draft(db, kind, draft.id, author, {"titol": "Canvi"}, 1)

    drafts.withdraw(db, kind, draft.id, author)
    drafts.submit(db, kind, draft.id, author)
    rejected = drafts.reject(db, kind, draft.id, admin, notes="falten fonts")
    assert rejected.status == "rebutjat"
    with pytest.raises(ConflictError):
        drafts.withdraw(db, kind, draft.id, author)


def test_stale_save_is_rejected(db, municipi, make_user):
    author = make_user()
    admin = make_user(is_admin=True)
    historia = drafts.ensure_historia(db, municipi.id)
    kind = drafts.HISTORIA_GENERAL
    draft = drafts.create_draft(db, kind, historia.id, author.id)
    for lock in range(3):
        drafts.update_draft(db, kind, draft.id, author, general(f"Versió {lock}"), lock)

    saved = drafts.update_draft(db, kind, draft.id, admin, general("Text de B"), 3)
    assert saved.lock_version == 4

    with pytest.raises(ConflictError):
        drafts.update_draft(db, kind, draft.id, author, general("Text de A"), 3)

    db.expire_all()
    stored = drafts.get_version(db, kind, draft.id)
    assert (stored.titol, stored.lock_version) == ("Text de B", 4)


def test_only_creator_or_admin_edits(db, municipi, make_user):
    author, stranger = make_user(), make_user()
    historia = drafts.ensure_historia(db, municipi.id)
    draft = drafts.create_draft(db, drafts.HISTORIA_GENERAL, historia.id, author.id)
    with pytest.raises(ForbiddenError):
        drafts.update_draft(db, drafts.HISTORIA_GENERAL, draft.id, stranger, general(), 0)


def test_rollback_to_older_published_version(db, municipi, make_user):
    author = make_user()
    admin = make_user(is_admin=True)
    mapa = drafts.create_mapa(db, municipi.id, "Nucli antic", author.id)
    kind = drafts.MAPA

    published = []
    for title in ("Primer plànol", "Segon plànol"):
        draft = drafts.create_draft(db, kind, mapa.id, author.id)
        assert json.loads(draft.data_json)["layers"]["houses"] == []
        drafts.update_draft(db, kind, draft.id, author, {"titol": title, "data_json": draft.data_json}, 0)
        drafts.submit(db, kind, draft.id, author)
        published.append(drafts.approve(db, kind, draft.id, admin).id)

    drafts.rollback(db, kind, mapa.id, published[0], admin)
    db.refresh(mapa)
    assert mapa.current_version_id == published[0]

    pending = drafts.create_draft(db, kind, mapa.id, author.id)
    with pytest.raises(ConflictError):
        drafts.rollback(db, kind, mapa.id, pending.id, admin)
    other = drafts.create_mapa(db, municipi.id, "Afores", author.id)
    with pytest.raises(NotFoundError):
        drafts.rollback(db, kind, other.id, published[1], admin)


def test_unknown_parents_and_kinds(db, make_user):
    with pytest.raises(NotFoundError):
        drafts.get_kind("poem")
    with pytest.raises(NotFoundError):
        drafts.ensure_historia(db, 999)
    with pytest.raises(NotFoundError):
        drafts.create_draft(db, drafts.MAPA, 999, make_user().id)

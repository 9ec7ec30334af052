import pytest

from app.config import settings
from app.core import matching
from app.core.errors import NotFoundError, ValidationError
from app.core.search_index import upsert_registre_doc
from app.models.coincidencia import Coincidencia
from app.models.coincidencia_decision import CoincidenciaDecision
from app.models.llibre import Llibre
from app.models.municipi import Municipi
from app.models.notification import Notification
from app.models.persona import Persona
from app.models.registre import Registre
from app.models.registre_persona import RegistrePersona
from app.models.relacio import Relacio


# ---------------------- helpers ----------------------

def add_registre(db, llibre, year, people, tipus="baptisme"):
    registre = Registre(llibre_id=llibre.id, tipus_acte=tipus, any_doc=year, moderation_status="publicat")
    db.add(registre)
    db.flush()
    for rol, nom, cognom in people:
        db.add(RegistrePersona(transcripcio_id=registre.id, rol=rol, nom=nom, cognom1=cognom))
    db.flush()
    db.refresh(registre)
    upsert_registre_doc(db, registre.id)
    db.commit()
    return registre


@pytest.fixture()
def corpus(db):
    bcn = Municipi(nom="Barcelona")
    db.add(bcn)
    db.flush()
    llibre = Llibre(municipi_id=bcn.id, titol="Baptismes 1890-1910")
    db.add(llibre)
    db.commit()
    return llibre


@pytest.fixture()
def joan(db, make_user, make_tree):
    owner = make_user()
    tree = make_tree(owner, "Puig")
    p = Persona(
        arbre_id=tree.id,
        owner_user_id=owner.id,
        nom="Joan",
        cognom1="Puig",
        data_naixement="1 JAN 1900",
        lloc_naixement="Barcelona",
        status="active",
    )
    db.add(p)
    db.commit()
    return p


# ---------------------- scoring ----------------------

def test_feature_scores():
    assert matching.date_score(1900, 1902, None) == 0.6
    assert matching.date_score(1900, None, "1901-05-01") == 0.8
    assert matching.date_score(1900, 1920, None) == 0.0
    assert matching.date_score(0, 1900, None) == 0.0
    assert matching.place_score("Sant Andreu, Barcelona", "Barcelona") == 1.0
    assert matching.place_score("Girona", "Barcelona") == 0.0
    assert matching.token_match_ratio(["joan", "pere"], {"joan"}) == 0.5


def test_relations_score_uses_parent_roles():
    info = matching.RelationInfo(fathers=["Josep Puig"], mothers=["Anna Vila"])
    persones = [
        RegistrePersona(rol="pare", nom="Josep", cognom1="Puig"),
        RegistrePersona(rol="mare", nom="Rosa", cognom1="Mas"),
    ]
    assert matching.relations_score(info, persones) == 0.5
    assert matching.relations_score(matching.RelationInfo(), persones) == 0.0


def test_reason_payload_is_integer_percentages():
    composite, reason = matching.build_reason(
        matching.MatchConfig(),
        {"name": 1.0, "surname": 1.0, "date": 0.6, "place": 1.0, "relations": 0.0},
    )
    assert composite == pytest.approx(0.89)
    assert reason["total"] == 89
    assert reason["items"][2] == {"key": "date", "score": 60, "weight": 15}


def test_percent_rounds_halves_up():
    assert matching.percent(0.125) == 13
    assert matching.percent(0.625) == 63
    assert matching.percent(0.994) == 99
    assert matching.percent(1.0) == 100
    assert matching.percent(0.0) == 0


def test_min_score_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "ESP_MATCH_MIN_SCORE", 0)
    assert matching.MatchConfig.from_settings().min_score == 0
    monkeypatch.setattr(settings, "ESP_MATCH_MIN_SCORE", -5)
    assert matching.MatchConfig.from_settings().min_score == matching.DEFAULT_MIN_SCORE
    monkeypatch.setattr(settings, "ESP_MATCH_MIN_SCORE", 100)
    assert matching.MatchConfig.from_settings().min_score == 100


# ---------------------- engine ----------------------

def test_rebuild_creates_pending_match(db, corpus, joan):
    registre = add_registre(db, corpus, 1902, [("batejat", "Joan", "Puig")])

    created = matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig())

    assert created == 1
    match = db.query(Coincidencia).one()
    assert (match.persona_id, match.target_id, match.status) == (joan.id, registre.id, "pending")
    assert match.score == pytest.approx(0.89)
    assert db.query(Notification).filter(Notification.user_id == joan.owner_user_id).count() == 1


def test_rebuild_is_idempotent(db, corpus, joan):
    add_registre(db, corpus, 1902, [("batejat", "Joan", "Puig")])
    cfg = matching.MatchConfig()
    matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, cfg)
    assert matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, cfg) == 0
    assert db.query(Coincidencia).count() == 1


def test_weak_candidates_stay_below_min_score(db, corpus, joan):
    add_registre(db, corpus, 1900, [("batejat", "Pere", "Puig")])
    joan.lloc_naixement = "Girona"
    db.commit()
    assert matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig()) == 0


def test_recorded_parents_raise_the_score(db, corpus, joan):
    father = Persona(arbre_id=joan.arbre_id, owner_user_id=joan.owner_user_id, nom="Josep", cognom1="Puig", status="active")
    db.add(father)
    db.flush()
    db.add(Relacio(arbre_id=joan.arbre_id, persona_id=joan.id, related_persona_id=father.id, relation_type="father"))
    db.commit()
    add_registre(db, corpus, 1900, [("batejat", "Joan", "Puig"), ("pare", "Josep", "Puig")])

    matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig())
    match = db.query(Coincidencia).filter(Coincidencia.persona_id == joan.id).one()
    assert match.score == pytest.approx(1.0)


def test_min_score_100_keeps_only_exact_candidates(db, corpus, joan):
    father = Persona(arbre_id=joan.arbre_id, owner_user_id=joan.owner_user_id, nom="Josep", cognom1="Puig", status="active")
    db.add(father)
    db.flush()
    db.add(Relacio(arbre_id=joan.arbre_id, persona_id=joan.id, related_persona_id=father.id, relation_type="father"))
    db.commit()
    exact = add_registre(db, corpus, 1900, [("batejat", "Joan", "Puig"), ("pare", "Josep", "Puig")])
    add_registre(db, corpus, 1900, [("batejat", "Joan", "Puig"), ("pare", "Jaume", "Puig")])

    created = matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig(min_score=100))

    assert created == 1
    assert db.query(Coincidencia).one().target_id == exact.id


# ---------------------- decisions + views ----------------------

def test_decisions_are_audited(db, corpus, joan, make_user):
    add_registre(db, corpus, 1902, [("batejat", "Joan", "Puig")])
    matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig())
    match = db.query(Coincidencia).one()
    owner_id = joan.owner_user_id

    assert matching.decide(db, owner_id, match.id, "accept").status == "accepted"
    assert matching.decide(db, owner_id, match.id, "undo").status == "pending"
    assert db.query(CoincidenciaDecision).filter(CoincidenciaDecision.coincidencia_id == match.id).count() == 2

    with pytest.raises(ValidationError):
        matching.decide(db, owner_id, match.id, "maybe")
    with pytest.raises(NotFoundError):
        matching.decide(db, make_user().id, match.id, "accept")


def test_bulk_decision_skips_foreign_matches(db, corpus, joan, make_user):
    add_registre(db, corpus, 1902, [("batejat", "Joan", "Puig")])
    matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig())
    match = db.query(Coincidencia).one()

    assert matching.decide_bulk(db, make_user().id, [match.id], "reject") == 0
    assert matching.decide_bulk(db, joan.owner_user_id, [match.id, 9999], "ignore") == 1
    with pytest.raises(ValidationError):
        matching.decide_bulk(db, joan.owner_user_id, [], "ignore")


def test_list_matches_describes_target_and_hides_missing(db, corpus, joan):
    registre = add_registre(db, corpus, 1902, [("batejat", "Joan", "Puig")])
    matching.rebuild_for(db, joan.owner_user_id, joan.arbre_id, matching.MatchConfig())

    [row] = matching.list_matches(db, joan.owner_user_id, "pending")
    assert row["persona_name"] == "Joan Puig"
    assert row["score_pct"] == 89
    assert row["target_meta"] == "baptisme · 1902 · Baptismes 1890-1910 · Barcelona"
    assert row["reason"]["total"] == 89

    db.delete(registre)
    db.commit()
    assert matching.list_matches(db, joan.owner_user_id, "all") == []
    assert db.query(Coincidencia).count() == 1

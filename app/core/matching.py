import json
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.core.normalize import (
    extract_year,
    normalize_role,
    normalize_text,
    normalize_tokens,
    tokens_from_norm,
)
from app.core.notifications import notify_matches
from app.core.search_index import ENTITY_REGISTRE, SearchFilter, search
from app.models.coincidencia import Coincidencia
from app.models.coincidencia_decision import CoincidenciaDecision
from app.models.llibre import Llibre
from app.models.municipi import Municipi
from app.models.persona import Persona
from app.models.registre import Registre
from app.models.registre_persona import RegistrePersona
from app.models.relacio import Relacio

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANDIDATES = 25
DEFAULT_MIN_SCORE = 60

FATHER_ROLES = ["pare", "parenovi", "parenovia"]
MOTHER_ROLES = ["mare", "marenovi", "marenovia"]

DECISION_TO_STATUS = {
    "accept": "accepted",
    "ignore": "ignored",
    "reject": "rejected",
    "undo": "pending",
}


@dataclass
class MatchConfig:
    max_candidates: int = DEFAULT_MAX_CANDIDATES
    min_score: int = DEFAULT_MIN_SCORE
    weight_name: int = 40
    weight_surname: int = 30
    weight_date: int = 15
    weight_place: int = 10
    weight_relations: int = 5

    @classmethod
    def from_settings(cls) -> "MatchConfig":
        cfg = cls(
            max_candidates=settings.ESP_MATCH_MAX_CANDIDATES,
            min_score=settings.ESP_MATCH_MIN_SCORE,
            weight_name=settings.ESP_MATCH_WEIGHT_NAME,
            weight_surname=settings.ESP_MATCH_WEIGHT_SURNAME,
            weight_date=settings.ESP_MATCH_WEIGHT_DATE,
            weight_place=settings.ESP_MATCH_WEIGHT_PLACE,
            weight_relations=settings.ESP_MATCH_WEIGHT_RELATIONS,
        )
        if cfg.max_candidates <= 0:
            cfg.max_candidates = DEFAULT_MAX_CANDIDATES
        if cfg.min_score < 0:
            cfg.min_score = DEFAULT_MIN_SCORE
        return cfg


@dataclass
class RelationInfo:
    fathers: List[str] = field(default_factory=list)
    mothers: List[str] = field(default_factory=list)


# --------------------------------------------------
# PERSON FEATURES
# --------------------------------------------------
def display_name(p: Persona) -> str:
    parts = [(v or "").strip() for v in (p.nom, p.cognom1, p.cognom2)]
    name = " ".join(part for part in parts if part).strip()
    if not name:
        name = (p.nom_complet or "").strip()
    return name or "-"


def persona_year(p: Persona) -> int:
    return extract_year(p.data_naixement) or extract_year(p.data_defuncio)


def surname_text(p: Persona) -> str:
    return " ".join([p.cognom1 or "", p.cognom2 or ""]).strip()


def build_relation_index(persones: List[Persona], relacions: List[Relacio]) -> Dict[int, RelationInfo]:
    name_by_id = {p.id: display_name(p) for p in persones}
    out: Dict[int, RelationInfo] = {}
    for r in relacions:
        info = out.setdefault(r.persona_id, RelationInfo())
        name = (name_by_id.get(r.related_persona_id) or "").strip()
        if not name or name == "-":
            continue
        if r.relation_type == "father":
            info.fathers.append(name)
        elif r.relation_type == "mother":
            info.mothers.append(name)
    return out


# --------------------------------------------------
# FEATURE SCORES
# --------------------------------------------------
def token_match_ratio(tokens: List[str], target: set) -> float:
    if not tokens or not target:
        return 0.0
    hits = sum(1 for token in tokens if token in target)
    return hits / len(tokens)


def date_score(year: int, any_acte: Optional[int], data_acte: Optional[str]) -> float:
    if year <= 0:
        return 0.0
    target = any_acte if any_acte else extract_year(data_acte)
    if not target or target <= 0:
        return 0.0
    diff = abs(year - target)
    if diff == 0:
        return 1.0
    if diff <= 1:
        return 0.8
    if diff <= 2:
        return 0.6
    if diff <= 5:
        return 0.4
    if diff <= 10:
        return 0.2
    return 0.0


def place_score(place: str, municipi_name: str) -> float:
    place_norm = normalize_text(place)
    mun_norm = normalize_text(municipi_name)
    if not place_norm or not mun_norm:
        return 0.0
    if place_norm in mun_norm or mun_norm in place_norm:
        return 1.0
    return 0.0


def role_tokens(persones: List[RegistrePersona], roles: List[str]) -> List[List[str]]:
    out = []
    for p in persones:
        if normalize_role(p.rol) not in roles:
            continue
        name = " ".join([p.nom or "", p.cognom1 or "", p.cognom2 or ""]).strip()
        if name:
            out.append(normalize_tokens(name))
    return out


def tokens_match(tokens: List[str], candidates: List[List[str]]) -> bool:
    if not tokens:
        return False
    for cand in candidates:
        if not cand:
            continue
        have = set(cand)
        hits = sum(1 for t in tokens if t in have)
        if hits / len(tokens) >= 0.6:
            return True
    return False


def relations_score(info: RelationInfo, persones: List[RegistrePersona]) -> float:
    total = len(info.fathers) + len(info.mothers)
    if total == 0:
        return 0.0
    fathers = role_tokens(persones, FATHER_ROLES)
    mothers = role_tokens(persones, MOTHER_ROLES)
    hits = 0
    for name in info.fathers:
        if tokens_match(normalize_tokens(name), fathers):
            hits += 1
    for name in info.mothers:
        if tokens_match(normalize_tokens(name), mothers):
            hits += 1
    return hits / total


def percent(value: float) -> int:
    """Rounds a [0, 1] score to a whole percentage, halves upwards."""
    return int(math.floor(value * 100 + 0.5))


def build_reason(cfg: MatchConfig, scores: Dict[str, float]):
    """
    Returns (composite in [0, 1], reason payload). The payload carries
    integer percentages so it renders without further rounding.
    """
    weights = {
        "name": cfg.weight_name,
        "surname": cfg.weight_surname,
        "date": cfg.weight_date,
        "place": cfg.weight_place,
        "relations": cfg.weight_relations,
    }
    total_weight = sum(weights.values())
    if total_weight <= 0:
        total_weight = 1

    composite = sum(scores[key] * weights[key] for key in weights) / total_weight
    reason = {
        "total": percent(composite),
        "items": [
            {"key": key, "score": percent(scores[key]), "weight": weights[key]}
            for key in weights
        ],
    }
    return composite, reason


# --------------------------------------------------
# ENGINE
# --------------------------------------------------
class MatchEngine:
    def __init__(self, db: Session, cfg: Optional[MatchConfig] = None):
        self.db = db
        self.cfg = cfg or MatchConfig.from_settings()
        self._municipi_names: Dict[int, str] = {}

    def municipi_name(self, municipi_id: Optional[int]) -> str:
        if not municipi_id:
            return ""
        if municipi_id not in self._municipi_names:
            mun = self.db.query(Municipi).filter(Municipi.id == municipi_id).first()
            self._municipi_names[municipi_id] = mun.nom if mun else ""
        return self._municipi_names[municipi_id]

    def candidate_filter(self, p: Persona) -> SearchFilter:
        name = display_name(p)
        f = SearchFilter(
            entity=ENTITY_REGISTRE,
            query_norm=normalize_text(name),
            query_tokens=normalize_tokens(name),
            name_norm=normalize_text(p.nom),
            surname_norm=normalize_text(surname_text(p)),
            name_tokens=normalize_tokens(p.nom),
            surname_tokens=normalize_tokens(surname_text(p)),
            page=1,
            page_size=self.cfg.max_candidates,
        )
        year = persona_year(p)
        if year > 0:
            f.any_from = max(year - 5, 0)
            f.any_to = year + 5
        return f

    def score_candidate(self, p: Persona, info: RelationInfo, doc) -> tuple:
        registre_persones = self.db.query(RegistrePersona).filter(
            RegistrePersona.transcripcio_id == doc.entity_id
        ).all()
        place = (p.lloc_naixement or "").strip() or (p.lloc_defuncio or "").strip()
        scores = {
            "name": token_match_ratio(normalize_tokens(p.nom), tokens_from_norm(doc.person_tokens_norm)),
            "surname": token_match_ratio(
                normalize_tokens(surname_text(p)),
                tokens_from_norm(f"{doc.cognoms_tokens_norm or ''} {doc.cognoms_canon or ''}"),
            ),
            "date": date_score(persona_year(p), doc.any_acte, doc.data_acte),
            "place": place_score(place, self.municipi_name(doc.municipi_id)) if place else 0.0,
            "relations": relations_score(info, registre_persones),
        }
        return build_reason(self.cfg, scores)

    def match_persona(self, owner_id: int, p: Persona, info: RelationInfo) -> int:
        name = display_name(p)
        if not name or name == "-":
            return 0

        rows, _, _ = search(self.db, self.candidate_filter(p))

        created = 0
        for doc in rows:
            if doc.entity_type != ENTITY_REGISTRE:
                continue
            exists = self.db.query(Coincidencia.id).filter(
                Coincidencia.owner_user_id == owner_id,
                Coincidencia.persona_id == p.id,
                Coincidencia.target_type == ENTITY_REGISTRE,
                Coincidencia.target_id == doc.entity_id,
            ).first()
            if exists:
                continue

            try:
                composite, reason = self.score_candidate(p, info, doc)
            except Exception:
                logger.warning("matching: persona %s candidate %s failed", p.id, doc.entity_id, exc_info=True)
                continue

            if percent(composite) < self.cfg.min_score:
                continue

            self.db.add(Coincidencia(
                owner_user_id=owner_id,
                arbre_id=p.arbre_id,
                persona_id=p.id,
                target_type=ENTITY_REGISTRE,
                target_id=doc.entity_id,
                score=composite,
                reason_json=json.dumps(reason),
                status="pending",
            ))
            created += 1

        if created:
            try:
                self.db.commit()
            except IntegrityError:
                # another rebuild inserted the same pair first
                self.db.rollback()
                logger.info("matching: persona %s raced with a concurrent rebuild", p.id)
                return 0
        return created

    def rebuild_for(self, owner_id: int, arbre_id: int) -> int:
        persones = self.db.query(Persona).filter(
            Persona.arbre_id == arbre_id,
            Persona.status == "active",
        ).order_by(Persona.id).all()
        relacions = self.db.query(Relacio).filter(Relacio.arbre_id == arbre_id).all()
        index = build_relation_index(persones, relacions)

        total = 0
        for p in persones:
            if p.owner_user_id != owner_id:
                continue
            try:
                total += self.match_persona(owner_id, p, index.get(p.id, RelationInfo()))
            except Exception:
                self.db.rollback()
                logger.warning("matching: persona %s skipped", p.id, exc_info=True)

        logger.info("matching: tree %s owner %s -> %d new matches", arbre_id, owner_id, total)
        if total > 0:
            notify_matches(self.db, owner_id, arbre_id, total)
        return total


def rebuild_for(db: Session, owner_id: int, arbre_id: int, cfg: Optional[MatchConfig] = None) -> int:
    return MatchEngine(db, cfg).rebuild_for(owner_id, arbre_id)


# --------------------------------------------------
# DECISIONS
# --------------------------------------------------
def _apply_decision(db: Session, match: Coincidencia, decision: str, status: str, user_id: int):
    match.status = status
    db.add(CoincidenciaDecision(
        coincidencia_id=match.id,
        decision=decision,
        decided_by=user_id,
    ))


def decide(db: Session, user_id: int, match_id: int, decision: str) -> Coincidencia:
    decision = (decision or "").strip()
    status = DECISION_TO_STATUS.get(decision)
    if not status:
        raise ValidationError("invalid decision", field="decision")

    match = db.query(Coincidencia).filter(Coincidencia.id == match_id).first()
    if not match or match.owner_user_id != user_id:
        raise NotFoundError("match not found")

    _apply_decision(db, match, decision, status, user_id)
    db.commit()
    db.refresh(match)
    return match


def decide_bulk(db: Session, user_id: int, match_ids: List[int], decision: str) -> int:
    decision = (decision or "").strip()
    status = DECISION_TO_STATUS.get(decision)
    if not status:
        raise ValidationError("invalid decision", field="decision")
    if not match_ids:
        raise ValidationError("no matches selected", field="match_ids")

    applied = 0
    for match_id in match_ids:
        match = db.query(Coincidencia).filter(Coincidencia.id == match_id).first()
        if not match or match.owner_user_id != user_id:
            continue
        _apply_decision(db, match, decision, status, user_id)
        applied += 1
    db.commit()
    return applied


# --------------------------------------------------
# VIEWS
# --------------------------------------------------
def registre_meta(db: Session, registre: Registre) -> str:
    parts = []
    if registre.tipus_acte:
        parts.append(registre.tipus_acte)
    if registre.any_doc:
        parts.append(str(registre.any_doc))
    elif registre.data_acte_iso:
        parts.append(registre.data_acte_iso.strip())
    llibre = db.query(Llibre).filter(Llibre.id == registre.llibre_id).first()
    if llibre:
        if (llibre.titol or "").strip():
            parts.append(llibre.titol.strip())
        if llibre.municipi_id:
            mun = db.query(Municipi).filter(Municipi.id == llibre.municipi_id).first()
            if mun and (mun.nom or "").strip():
                parts.append(mun.nom.strip())
    return " · ".join(parts)


def list_matches(db: Session, owner_id: int, status: str = "") -> List[Dict]:
    q = db.query(Coincidencia).filter(Coincidencia.owner_user_id == owner_id)
    if status and status != "all":
        q = q.filter(Coincidencia.status == status)

    out = []
    for m in q.order_by(Coincidencia.score.desc(), Coincidencia.id).all():
        registre = db.query(Registre).filter(Registre.id == m.target_id).first()
        if registre is None:
            # the record left the corpus; the match is kept but not shown
            continue
        persona = db.query(Persona).filter(Persona.id == m.persona_id).first()
        reason = json.loads(m.reason_json) if m.reason_json else {"total": 0, "items": []}
        out.append({
            "id": m.id,
            "persona_id": m.persona_id,
            "persona_name": display_name(persona) if persona else "-",
            "arbre_id": m.arbre_id,
            "target_type": m.target_type,
            "target_id": m.target_id,
            "target_meta": registre_meta(db, registre),
            "score": m.score,
            "score_pct": percent(m.score or 0),
            "status": m.status,
            "reason": reason,
            "updated_at": m.updated_at,
        })
    return out

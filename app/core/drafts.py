"""
Draft / moderation lifecycle shared by every versioned content type.

    draft --submit--> pendent --approve--> publicat
                         |--reject--> rebutjat
                         '--withdraw--> draft

Saving a draft is an optimistic compare-and-set on lock_version.
Approving swaps the parent's current version pointer; older published
versions stay around so an admin can roll back to any of them.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.event_historic import EventHistoric
from app.models.event_historic_version import EventHistoricVersion
from app.models.historia_fet import HistoriaFet
from app.models.historia_fet_version import HistoriaFetVersion
from app.models.historia_general_version import HistoriaGeneralVersion
from app.models.mapa_version import MapaVersion
from app.models.municipi import Municipi
from app.models.municipi_historia import MunicipiHistoria
from app.models.municipi_mapa import MunicipiMapa
from app.models.user import User

logger = logging.getLogger(__name__)

TITLE_MIN = 3
TITLE_MAX = 120
RESUM_MAX = 600
BODY_MAX = 50000
TAGS_MAX = 10
TAG_MAX_LEN = 40
YEAR_MIN = 0
YEAR_MAX = 2100
SOURCE_LABEL_MAX = 120
SOURCE_URL_MAX = 200

EVENT_RESUM_MAX = 500
EVENT_DESCRIPCIO_MAX = 5000
EVENT_FONTS_MAX = 2000
EVENT_TYPES = {
    "guerra", "conflicte_local", "plaga", "pesta", "pandemia", "fam",
    "crisi_economica", "revolta", "incendi", "terratremol", "inundacio",
    "assassinat", "repressio", "migracio_massiva", "altres",
}
EVENT_PRECISIONS = {"dia", "mes", "any", "decada"}

MAP_MAX_BYTES = 2 << 20
MAP_MAX_FEATURES = 2000
MAP_MAX_POINTS = 200
# layers whose features carry a points polyline
MAP_LAYERS = {
    "houses": True,
    "streets": True,
    "rivers": True,
    "elements": False,
    "bounds": True,
    "toponyms": False,
}

TRANSITIONS = {
    "draft": {"pendent"},
    "pendent": {"publicat", "rebutjat", "draft"},
}


# --------------------------------------------------
# VALIDATORS
# --------------------------------------------------
def normalize_tags(raw: Optional[str]) -> Optional[str]:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        tags = json.loads(raw)
    except ValueError:
        raise ValidationError("invalid tags", field="tags_json")
    if not isinstance(tags, list):
        raise ValidationError("invalid tags", field="tags_json")

    seen = set()
    out = []
    for t in tags:
        tag = str(t).strip()
        if not tag:
            continue
        if len(tag) > TAG_MAX_LEN:
            raise ValidationError("tag too long", field="tags_json")
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(tag)
    if len(out) > TAGS_MAX:
        raise ValidationError("too many tags", field="tags_json")
    return json.dumps(out, ensure_ascii=False) if out else None


def is_valid_url(raw: str) -> bool:
    try:
        u = urlparse((raw or "").strip())
    except ValueError:
        return False
    return u.scheme in ("http", "https") and bool(u.netloc)


def normalize_sources(raw: Optional[str]) -> Optional[str]:
    """Sources are one "label|url" per line."""
    raw = (raw or "").strip()
    if not raw:
        return None
    out = []
    for line in raw.split("\n"):
        entry = line.strip()
        if not entry:
            continue
        parts = entry.split("|", 1)
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ValidationError("invalid source line", field="fonts_json")
        label, link = parts[0].strip(), parts[1].strip()
        if len(label) > SOURCE_LABEL_MAX:
            raise ValidationError("source label too long", field="fonts_json")
        if len(link) > SOURCE_URL_MAX:
            raise ValidationError("source url too long", field="fonts_json")
        if not is_valid_url(link):
            raise ValidationError("source url invalid", field="fonts_json")
        out.append(f"{label}|{link}")
    return "\n".join(out) if out else None


def _check_title(titol: Optional[str], strict: bool) -> Optional[str]:
    title = (titol or "").strip()
    if strict and not title:
        raise ValidationError("title is required", field="titol")
    if title and len(title) < TITLE_MIN:
        raise ValidationError("title too short", field="titol")
    if len(title) > TITLE_MAX:
        raise ValidationError("title too long", field="titol")
    return title or None


def validate_general(values: Dict, strict: bool) -> Dict:
    resum = (values.get("resum") or "").strip()
    if len(resum) > RESUM_MAX:
        raise ValidationError("summary too long", field="resum")
    body = (values.get("cos_text") or "").strip()
    if len(body) > BODY_MAX:
        raise ValidationError("body too long", field="cos_text")
    return {
        "titol": _check_title(values.get("titol"), strict),
        "resum": resum or None,
        "cos_text": body or None,
        "tags_json": normalize_tags(values.get("tags_json")),
    }


def _year(value, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise ValidationError("invalid year", field=field)
    if year < YEAR_MIN or year > YEAR_MAX:
        raise ValidationError("year out of range", field=field)
    return year


def validate_fet(values: Dict, strict: bool) -> Dict:
    out = validate_general(values, strict)
    any_inici = _year(values.get("any_inici"), "any_inici")
    any_fi = _year(values.get("any_fi"), "any_fi")
    if any_inici is not None and any_fi is not None and any_inici > any_fi:
        raise ValidationError("start year after end year", field="any_inici")
    out.update({
        "any_inici": any_inici,
        "any_fi": any_fi,
        "data_display": (values.get("data_display") or "").strip() or None,
        "fonts_json": normalize_sources(values.get("fonts_json")),
    })
    return out


def _iso_date(value, field: str) -> Optional[str]:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        datetime.strptime(raw, "%Y-%m-%d")
    except ValueError:
        raise ValidationError("invalid date, expected YYYY-MM-DD", field=field)
    return raw


def validate_event(values: Dict, strict: bool) -> Dict:
    tipus = (values.get("tipus") or "").strip().lower()
    if tipus and tipus not in EVENT_TYPES:
        raise ValidationError("invalid event type", field="tipus")
    if strict and not tipus:
        raise ValidationError("event type is required", field="tipus")
    precisio = (values.get("precisio") or "").strip().lower()
    if precisio and precisio not in EVENT_PRECISIONS:
        raise ValidationError("invalid date precision", field="precisio")

    resum = (values.get("resum") or "").strip()
    if len(resum) > EVENT_RESUM_MAX:
        raise ValidationError("summary too long", field="resum")
    descripcio = (values.get("descripcio") or "").strip()
    if len(descripcio) > EVENT_DESCRIPCIO_MAX:
        raise ValidationError("description too long", field="descripcio")
    fonts = (values.get("fonts") or "").strip()
    if len(fonts) > EVENT_FONTS_MAX:
        raise ValidationError("sources too long", field="fonts")

    # ISO dates compare correctly as strings
    inici = _iso_date(values.get("data_inici"), "data_inici")
    fi = _iso_date(values.get("data_fi"), "data_fi")
    if inici and fi and fi < inici:
        raise ValidationError("end date before start date", field="data_fi")
    return {
        "titol": _check_title(values.get("titol"), strict),
        "tipus": tipus or None,
        "resum": resum or None,
        "descripcio": descripcio or None,
        "data_inici": inici,
        "data_fi": fi,
        "precisio": precisio or None,
        "fonts": fonts or None,
    }


def validate_map_json(raw: Optional[str]):
    raw = raw or ""
    if not raw.strip():
        raise ValidationError("map data is empty", field="data_json")
    if len(raw.encode("utf-8")) > MAP_MAX_BYTES:
        raise ValidationError("map data too large", field="data_json")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError("invalid map data", field="data_json")
    if not isinstance(payload, dict):
        raise ValidationError("invalid map data", field="data_json")
    layers = payload.get("layers")
    if not isinstance(layers, dict):
        return

    features = 0
    for key, has_points in MAP_LAYERS.items():
        if key not in layers:
            continue
        items = layers[key]
        if not isinstance(items, list):
            raise ValidationError(f"invalid layer {key}", field="data_json")
        for item in items:
            features += 1
            if features > MAP_MAX_FEATURES:
                raise ValidationError("too many features", field="data_json")
            if has_points and isinstance(item, dict) and isinstance(item.get("points"), list):
                if len(item["points"]) > MAP_MAX_POINTS:
                    raise ValidationError("too many points", field="data_json")


def validate_mapa(values: Dict, strict: bool) -> Dict:
    data = values.get("data_json")
    if not isinstance(data, str) and data is not None:
        data = json.dumps(data)
    validate_map_json(data)
    return {
        "titol": _check_title(values.get("titol"), strict),
        "data_json": data,
    }


def empty_map_json() -> str:
    return json.dumps({
        "viewBox": [0, 0, 1000, 700],
        "layers": {key: [] for key in MAP_LAYERS},
    })


# --------------------------------------------------
# KINDS
# --------------------------------------------------
@dataclass
class DraftKind:
    name: str
    parent_model: type
    version_model: type
    parent_fk: str
    pointer: str
    fields: tuple
    validate: Callable[[Dict, bool], Dict]
    default_values: Optional[Callable[[], Dict]] = None


HISTORIA_GENERAL = DraftKind(
    name="historia_general",
    parent_model=MunicipiHistoria,
    version_model=HistoriaGeneralVersion,
    parent_fk="historia_id",
    pointer="current_general_version_id",
    fields=("titol", "resum", "cos_text", "tags_json"),
    validate=validate_general,
)

HISTORIA_FET = DraftKind(
    name="historia_fet",
    parent_model=HistoriaFet,
    version_model=HistoriaFetVersion,
    parent_fk="fet_id",
    pointer="current_version_id",
    fields=("any_inici", "any_fi", "data_display", "titol", "resum", "cos_text", "tags_json", "fonts_json"),
    validate=validate_fet,
)

MAPA = DraftKind(
    name="mapa",
    parent_model=MunicipiMapa,
    version_model=MapaVersion,
    parent_fk="mapa_id",
    pointer="current_version_id",
    fields=("titol", "data_json"),
    validate=validate_mapa,
    default_values=lambda: {"data_json": empty_map_json()},
)

EVENT = DraftKind(
    name="event",
    parent_model=EventHistoric,
    version_model=EventHistoricVersion,
    parent_fk="event_id",
    pointer="current_version_id",
    fields=("titol", "tipus", "resum", "descripcio", "data_inici", "data_fi", "precisio", "fonts"),
    validate=validate_event,
)

KINDS = {k.name: k for k in (HISTORIA_GENERAL, HISTORIA_FET, MAPA, EVENT)}


def get_kind(name: str) -> DraftKind:
    kind = KINDS.get((name or "").strip())
    if kind is None:
        raise NotFoundError("unknown content type")
    return kind


# --------------------------------------------------
# PARENTS
# --------------------------------------------------
def _require_municipi(db: Session, municipi_id: int) -> Municipi:
    mun = db.query(Municipi).filter(Municipi.id == municipi_id).first()
    if not mun:
        raise NotFoundError("municipality not found")
    return mun


def ensure_historia(db: Session, municipi_id: int) -> MunicipiHistoria:
    _require_municipi(db, municipi_id)
    historia = db.query(MunicipiHistoria).filter(MunicipiHistoria.municipi_id == municipi_id).first()
    if historia is None:
        historia = MunicipiHistoria(municipi_id=municipi_id)
        db.add(historia)
        db.commit()
        db.refresh(historia)
    return historia


def create_fet(db: Session, municipi_id: int, user_id: int) -> HistoriaFet:
    _require_municipi(db, municipi_id)
    fet = HistoriaFet(municipi_id=municipi_id, created_by=user_id)
    db.add(fet)
    db.commit()
    db.refresh(fet)
    return fet


def create_event(db: Session, municipi_id: int, user_id: int) -> EventHistoric:
    _require_municipi(db, municipi_id)
    event = EventHistoric(municipi_id=municipi_id, created_by=user_id)
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def create_mapa(db: Session, municipi_id: int, nom: str, user_id: int) -> MunicipiMapa:
    _require_municipi(db, municipi_id)
    nom = (nom or "").strip()
    if not nom:
        raise ValidationError("name is required", field="nom")
    mapa = MunicipiMapa(municipi_id=municipi_id, nom=nom, created_by=user_id)
    db.add(mapa)
    db.commit()
    db.refresh(mapa)
    return mapa


def get_parent(db: Session, kind: DraftKind, parent_id: int):
    parent = db.query(kind.parent_model).filter(kind.parent_model.id == parent_id).first()
    if parent is None:
        raise NotFoundError(f"{kind.name} not found")
    return parent


# --------------------------------------------------
# VERSIONS
# --------------------------------------------------
def get_version(db: Session, kind: DraftKind, version_id: int):
    V = kind.version_model
    version = db.query(V).filter(V.id == version_id).first()
    if version is None:
        raise NotFoundError("version not found")
    return version


def list_versions(db: Session, kind: DraftKind, parent_id: int) -> List:
    V = kind.version_model
    return db.query(V).filter(getattr(V, kind.parent_fk) == parent_id).order_by(V.version.desc()).all()


def list_pending(db: Session, kind: DraftKind) -> List:
    V = kind.version_model
    return db.query(V).filter(V.status == "pendent").order_by(V.created_at, V.id).all()


def _require_editor(user: User, version):
    if version.created_by != user.id and not user.is_admin:
        raise ForbiddenError("not allowed")


def _require_moderator(user: User):
    if not user.is_admin:
        raise ForbiddenError("moderators only")


def create_draft(db: Session, kind: DraftKind, parent_id: int, user_id: int, force_new: bool = False):
    """
    Returns the caller's open draft for the parent, or a new one seeded
    from the current published version (lock_version 0).
    """
    parent = get_parent(db, kind, parent_id)
    V = kind.version_model
    fk = getattr(V, kind.parent_fk)

    if not force_new:
        existing = db.query(V).filter(
            fk == parent_id,
            V.created_by == user_id,
            V.status == "draft",
        ).order_by(V.id.desc()).first()
        if existing is not None:
            return existing

    values = kind.default_values() if kind.default_values else {}
    current_id = getattr(parent, kind.pointer)
    if current_id:
        current = db.query(V).filter(V.id == current_id).first()
        if current is not None:
            values = {field: getattr(current, field) for field in kind.fields}

    next_number = (db.query(func.max(V.version)).filter(fk == parent_id).scalar() or 0) + 1
    version = V(
        version=next_number,
        status="draft",
        lock_version=0,
        created_by=user_id,
        **{kind.parent_fk: parent_id},
        **values,
    )
    db.add(version)
    db.commit()
    db.refresh(version)
    return version


def update_draft(db: Session, kind: DraftKind, version_id: int, user: User, values: Dict, lock_version: int):
    version = get_version(db, kind, version_id)
    _require_editor(user, version)
    if version.status != "draft":
        raise ConflictError("version is not a draft")
    clean = kind.validate(values, False)

    V = kind.version_model
    clean["lock_version"] = V.lock_version + 1
    clean["updated_at"] = datetime.utcnow()
    updated = db.query(V).filter(
        V.id == version_id,
        V.status == "draft",
        V.lock_version == lock_version,
    ).update(clean, synchronize_session=False)
    if updated == 0:
        db.rollback()
        raise ConflictError("another edit happened")
    db.commit()
    db.refresh(version)
    return version


def set_status(db: Session, version, status: str, notes: str = "", moderator_id: Optional[int] = None):
    if status not in TRANSITIONS.get(version.status, set()):
        raise ConflictError(f"cannot move from {version.status} to {status}")
    version.status = status
    if moderator_id is not None:
        version.moderated_by = moderator_id
        version.moderated_at = datetime.utcnow()
        version.moderation_notes = (notes or "").strip() or None


def submit(db: Session, kind: DraftKind, version_id: int, user: User):
    version = get_version(db, kind, version_id)
    _require_editor(user, version)
    if version.status != "draft":
        raise ConflictError("version is not a draft")
    kind.validate({field: getattr(version, field) for field in kind.fields}, True)
    set_status(db, version, "pendent")
    db.commit()
    logger.info("drafts: %s version %s submitted by %s", kind.name, version.id, user.id)
    return version


def withdraw(db: Session, kind: DraftKind, version_id: int, user: User):
    version = get_version(db, kind, version_id)
    _require_editor(user, version)
    set_status(db, version, "draft")
    db.commit()
    return version


def approve(db: Session, kind: DraftKind, version_id: int, moderator: User, notes: str = ""):
    _require_moderator(moderator)
    version = get_version(db, kind, version_id)
    parent = get_parent(db, kind, getattr(version, kind.parent_fk))
    set_status(db, version, "publicat", notes, moderator.id)
    setattr(parent, kind.pointer, version.id)
    db.commit()
    logger.info("drafts: %s version %s published", kind.name, version.id)
    return version


def reject(db: Session, kind: DraftKind, version_id: int, moderator: User, notes: str = ""):
    _require_moderator(moderator)
    version = get_version(db, kind, version_id)
    set_status(db, version, "rebutjat", notes, moderator.id)
    db.commit()
    return version


def rollback(db: Session, kind: DraftKind, parent_id: int, version_id: int, moderator: User):
    _require_moderator(moderator)
    parent = get_parent(db, kind, parent_id)
    version = get_version(db, kind, version_id)
    if getattr(version, kind.parent_fk) != parent_id:
        raise NotFoundError("version not found")
    if version.status != "publicat":
        raise ConflictError("only published versions can be restored")
    setattr(parent, kind.pointer, version.id)
    db.commit()
    logger.info("drafts: %s %s rolled back to version %s", kind.name, parent_id, version.id)
    return parent


def current_version(db: Session, kind: DraftKind, parent):
    current_id = getattr(parent, kind.pointer)
    if not current_id:
        return None
    V = kind.version_model
    return db.query(V).filter(V.id == current_id).first()

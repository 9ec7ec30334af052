import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.normalize import (
    cognom_key,
    extract_year,
    normalize_role,
    normalize_text,
    normalize_tokens,
    phonetic_tokens,
)
from app.models.llibre import Llibre
from app.models.registre import Registre
from app.models.search_doc import SearchDoc

logger = logging.getLogger(__name__)

ENTITY_REGISTRE = "registre_raw"

# subject of the act per act type, first hit wins
SUBJECT_ROLES = {
    "baptisme": ["batejat", "baptizat", "infant"],
    "obit": ["difunt", "defunt", "mort"],
    "matrimoni": ["marit", "espos", "esposo", "esposa", "nuvi", "novia"],
    "confirmacio": ["confirmat", "confirmand", "confirmanda"],
    "padro": ["capfamilia", "capdefamilia", "cap"],
    "reclutament": ["recluta", "soldat"],
}


@dataclass
class SearchFilter:
    entity: str = ""
    query_norm: str = ""
    query_tokens: List[str] = field(default_factory=list)
    name_norm: str = ""
    surname_norm: str = ""
    name_tokens: List[str] = field(default_factory=list)
    surname_tokens: List[str] = field(default_factory=list)
    any_from: int = 0
    any_to: int = 0
    municipi_id: int = 0
    page: int = 1
    page_size: int = 25


# --------------------------------------------------
# QUERY
# --------------------------------------------------
def _doc_tokens(doc: SearchDoc) -> set:
    tokens = set((doc.person_tokens_norm or "").split())
    tokens.update((doc.cognoms_tokens_norm or "").split())
    tokens.update(normalize_text(doc.cognoms_canon).split())
    return tokens


def _relevance(doc: SearchDoc, wanted: List[str], query_norm: str) -> int:
    if not wanted:
        if query_norm and query_norm in (doc.full_norm or ""):
            return 1
        return 0 if query_norm else 1
    have = _doc_tokens(doc)
    return sum(1 for token in wanted if token in have)


def _filter_tokens(f: SearchFilter) -> List[str]:
    out = []
    for token in list(f.name_tokens) + list(f.surname_tokens) + list(f.query_tokens):
        if token and token not in out:
            out.append(token)
    return out


def search(db: Session, f: SearchFilter) -> Tuple[List[SearchDoc], int, Dict[str, Dict]]:
    """
    Returns (rows for the requested page, total hits, facets).
    Rows are ordered by the number of filter tokens they contain, then by
    entity id so pages are stable between calls.
    """
    q = db.query(SearchDoc)
    if f.entity:
        q = q.filter(SearchDoc.entity_type == f.entity)
    if f.any_from > 0:
        q = q.filter(SearchDoc.any_acte >= f.any_from)
    if f.any_to > 0:
        q = q.filter(SearchDoc.any_acte <= f.any_to)
    if f.municipi_id > 0:
        q = q.filter(SearchDoc.municipi_id == f.municipi_id)

    wanted = _filter_tokens(f)
    if wanted:
        clauses = []
        for token in wanted:
            clauses.append(SearchDoc.full_norm.contains(token))
            clauses.append(SearchDoc.person_tokens_norm.contains(token))
            clauses.append(SearchDoc.cognoms_canon.contains(token))
        q = q.filter(or_(*clauses))
    elif f.query_norm:
        q = q.filter(SearchDoc.full_norm.contains(f.query_norm))

    scored = []
    for doc in q.all():
        relevance = _relevance(doc, wanted, f.query_norm)
        if relevance <= 0:
            continue
        scored.append((relevance, doc))

    scored.sort(key=lambda item: (-item[0], item[1].entity_id))
    hits = [doc for _, doc in scored]

    facets: Dict[str, Dict] = {"entity_type": {}, "municipi_id": {}}
    for doc in hits:
        facets["entity_type"][doc.entity_type] = facets["entity_type"].get(doc.entity_type, 0) + 1
        if doc.municipi_id:
            facets["municipi_id"][doc.municipi_id] = facets["municipi_id"].get(doc.municipi_id, 0) + 1

    page = max(f.page, 1)
    page_size = f.page_size if f.page_size > 0 else 25
    start = (page - 1) * page_size
    return hits[start:start + page_size], len(hits), facets


# --------------------------------------------------
# MAINTENANCE
# --------------------------------------------------
def canonical_surnames(raw: List[str]) -> List[str]:
    out = []
    seen = set()
    for value in raw:
        key = cognom_key(value)
        if not key or key in seen:
            continue
        canon = normalize_text(value)
        if not canon:
            continue
        seen.add(key)
        out.append(canon)
    return out


def subject_of(registre: Registre):
    persones = list(registre.persones or [])
    roles = SUBJECT_ROLES.get(normalize_role(registre.tipus_acte), [])
    for role in roles:
        for p in persones:
            if normalize_role(p.rol) == role:
                return p
    for p in persones:
        if " ".join(filter(None, [p.nom, p.cognom1, p.cognom2])).strip():
            return p
    return None


def build_registre_doc(registre: Registre, llibre: Optional[Llibre]) -> dict:
    noms = []
    cognoms = []
    for p in registre.persones or []:
        if (p.nom or "").strip():
            noms.append(p.nom)
        if (p.cognom1 or "").strip():
            cognoms.append(p.cognom1)
        if (p.cognom2 or "").strip():
            cognoms.append(p.cognom2)

    nom_norm = normalize_text(" ".join(noms))
    cognoms_norm = normalize_text(" ".join(cognoms))
    person_tokens = normalize_tokens(*(noms + cognoms))
    cognom_tokens = normalize_tokens(*cognoms)

    municipi_id = None
    subject = subject_of(registre)
    if subject is not None and subject.municipi_id:
        municipi_id = subject.municipi_id
    elif llibre is not None:
        municipi_id = llibre.municipi_id

    any_acte = registre.any_doc if registre.any_doc and registre.any_doc > 0 else None
    if any_acte is None:
        year = extract_year(registre.data_acte_iso)
        any_acte = year or None

    return {
        "person_nom_norm": nom_norm,
        "cognoms_norm": cognoms_norm,
        "full_norm": " ".join(filter(None, [nom_norm, cognoms_norm])),
        "person_tokens_norm": " ".join(person_tokens),
        "cognoms_tokens_norm": " ".join(cognom_tokens),
        "person_phonetic": " ".join(phonetic_tokens(person_tokens)),
        "cognoms_phonetic": " ".join(phonetic_tokens(cognom_tokens)),
        "cognoms_canon": " ".join(canonical_surnames(cognoms)),
        "municipi_id": municipi_id,
        "llibre_id": llibre.id if llibre is not None else None,
        "data_acte": registre.data_acte_iso,
        "any_acte": any_acte,
    }


def delete_search_doc(db: Session, entity_type: str, entity_id: int):
    db.query(SearchDoc).filter(
        SearchDoc.entity_type == entity_type,
        SearchDoc.entity_id == entity_id,
    ).delete(synchronize_session=False)


def upsert_registre_doc(db: Session, registre_id: int) -> Optional[SearchDoc]:
    """
    Idempotent: running it twice leaves exactly one document.
    Unpublished or missing records lose their document.
    Does not commit.
    """
    registre = db.query(Registre).filter(Registre.id == registre_id).first()
    if not registre or registre.moderation_status != "publicat":
        delete_search_doc(db, ENTITY_REGISTRE, registre_id)
        return None

    values = build_registre_doc(registre, registre.llibre)

    doc = db.query(SearchDoc).filter(
        SearchDoc.entity_type == ENTITY_REGISTRE,
        SearchDoc.entity_id == registre.id,
    ).first()
    if not doc:
        doc = SearchDoc(entity_type=ENTITY_REGISTRE, entity_id=registre.id)
        db.add(doc)

    for key, value in values.items():
        setattr(doc, key, value)

    db.flush()
    return doc


def rebuild_search_index(db: Session) -> int:
    db.query(SearchDoc).delete(synchronize_session=False)

    count = 0
    ids = [
        row.id for row in
        db.query(Registre.id).filter(Registre.moderation_status == "publicat").order_by(Registre.id).all()
    ]
    for registre_id in ids:
        try:
            if upsert_registre_doc(db, registre_id) is not None:
                count += 1
        except Exception:
            logger.exception("search index: registre %s failed", registre_id)

    db.commit()
    logger.info("search index rebuilt: %d documents", count)
    return count

"""
Gramps Web synchronisation.

One sync pulls people and families from the remote server and reconciles
them into the bound tree. Two process-wide guards protect the remote:
a single-flight lock per connection and an exponential backoff after
failures. Both live in GrampsSyncStore and are never held across I/O.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import CancelledError, EspaiError, ExternalError
from app.core.gramps_client import (
    GrampsClient,
    merge_person_detail,
    normalize_event_type,
    normalize_note,
    resolve_person_id,
)
from app.core.notifications import notify_gramps_error
from app.core.secret_box import decrypt_token
from app.models.integracio import IntegracioGramps
from app.models.integracio_log import IntegracioGrampsLog
from app.models.persona import Persona
from app.models.relacio import Relacio

logger = logging.getLogger(__name__)

MAX_FAILURES = 6
MAX_BACKOFF = timedelta(hours=2)
KEEP_LOGS = 5


# --------------------------------------------------
# SINGLE-FLIGHT + BACKOFF STATE
# --------------------------------------------------
class GrampsSyncStore:
    def __init__(self):
        self._mu = threading.Lock()
        self._locks = set()
        self._failures: Dict[int, int] = {}
        self._next: Dict[int, datetime] = {}

    def try_lock(self, integ_id: int) -> bool:
        with self._mu:
            if integ_id in self._locks:
                return False
            self._locks.add(integ_id)
            return True

    def unlock(self, integ_id: int):
        with self._mu:
            self._locks.discard(integ_id)

    def should_skip(self, integ_id: int, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        with self._mu:
            nxt = self._next.get(integ_id)
            return nxt is not None and now < nxt

    def failures(self, integ_id: int) -> int:
        with self._mu:
            return self._failures.get(integ_id, 0)

    def next_attempt(self, integ_id: int) -> Optional[datetime]:
        with self._mu:
            return self._next.get(integ_id)

    def record_failure(self, integ_id: int, base_minutes: int, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.utcnow()
        if base_minutes <= 0:
            base_minutes = 5
        with self._mu:
            f = min(max(self._failures.get(integ_id, 0) + 1, 1), MAX_FAILURES)
            self._failures[integ_id] = f
            wait = timedelta(minutes=base_minutes * (2 ** (f - 1)))
            if wait > MAX_BACKOFF:
                wait = MAX_BACKOFF
            self._next[integ_id] = now + wait
            return self._next[integ_id]

    def record_success(self, integ_id: int):
        with self._mu:
            self._failures.pop(integ_id, None)
            self._next.pop(integ_id, None)


sync_store = GrampsSyncStore()


@dataclass
class SyncResult:
    skipped: bool = False
    persons_created: int = 0
    persons_updated: int = 0
    relations_created: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None


# --------------------------------------------------
# ENRICHMENT
# --------------------------------------------------
class Enricher:
    """
    Fills what the people listing leaves out. Persons listed without a sex
    get a detail lookup, and birth and death come from their events when
    the listing had none. Lookups are cached for one sync; a failed one
    leaves its fields empty.
    """

    def __init__(self, client: GrampsClient):
        self.client = client
        self._events: Dict[str, object] = {}
        self._places: Dict[str, str] = {}
        self._notes: Dict[str, str] = {}

    def _lookup(self, cache: Dict, key: str, fetch: Callable):
        if key not in cache:
            try:
                cache[key] = fetch(key)
            except ExternalError as e:
                logger.info("gramps sync: lookup %s failed (%s)", key, e.message)
                cache[key] = None
        return cache[key]

    def event(self, handle: str):
        event = self._lookup(self._events, handle, self.client.fetch_event)
        if event is not None and not event.place and event.place_ref:
            event.place = self._lookup(self._places, event.place_ref, self.client.fetch_place_name) or ""
        return event

    def person(self, gp):
        if not gp.sex and gp.handle:
            try:
                merge_person_detail(gp, self.client.fetch_person(gp.handle))
            except ExternalError as e:
                logger.info("gramps sync: detail for %s unavailable (%s)", gp.handle, e.message)

        for ref, _role in gp.event_refs:
            event = self.event(ref)
            if event is None:
                continue
            kind = normalize_event_type(event.type)
            if kind == "naixement":
                gp.birth_date = gp.birth_date or event.date
                gp.birth_place = gp.birth_place or event.place
            elif kind in ("defuncio", "enterrament"):
                gp.death_date = gp.death_date or event.date
                gp.death_place = gp.death_place or event.place

        parts = []
        for handle in gp.note_handles:
            text = self._lookup(self._notes, handle, self.client.fetch_note)
            text = normalize_note(text or "")
            if text:
                parts.append(text)
        gp.notes = " ".join(parts)
        return gp


def enrich_people(client: GrampsClient, people):
    enricher = Enricher(client)
    return [enricher.person(gp) for gp in people]


# --------------------------------------------------
# RECONCILIATION
# --------------------------------------------------
PERSON_FIELDS = (
    "nom", "cognom1", "cognom2", "nom_complet", "sexe",
    "data_naixement", "lloc_naixement", "data_defuncio", "lloc_defuncio", "notes",
)


def _person_values(gp) -> Dict[str, str]:
    cognom1 = gp.surname_parts[0] if len(gp.surname_parts) > 0 else gp.surname
    cognom2 = gp.surname_parts[1] if len(gp.surname_parts) > 1 else ""
    full_name = " ".join([gp.given, gp.surname_full or gp.surname]).strip()
    return {
        "nom": gp.given,
        "cognom1": cognom1,
        "cognom2": cognom2,
        "nom_complet": full_name,
        "sexe": gp.sex,
        "data_naixement": gp.birth_date,
        "lloc_naixement": gp.birth_place,
        "data_defuncio": gp.death_date,
        "lloc_defuncio": gp.death_place,
        "notes": gp.notes,
    }


def _merge_person(existing: Persona, values: Dict[str, str]) -> bool:
    changed = False
    for key in PERSON_FIELDS:
        value = (values.get(key) or "").strip()
        if value and value != (getattr(existing, key) or ""):
            setattr(existing, key, value)
            changed = True
    return changed


def reconcile(db: Session, integ: IntegracioGramps, people, families) -> SyncResult:
    result = SyncResult()

    existing = db.query(Persona).filter(Persona.arbre_id == integ.arbre_id).all()
    by_external = {p.external_id: p for p in existing if p.external_id}
    ext_map: Dict[str, int] = {key: p.id for key, p in by_external.items()}

    for gp in people:
        keys = gp.keys()
        if not keys:
            continue
        values = _person_values(gp)

        persona = None
        for key in keys:
            if key in by_external:
                persona = by_external[key]
                break

        if persona is not None:
            if _merge_person(persona, values):
                result.persons_updated += 1
        else:
            persona = Persona(
                arbre_id=integ.arbre_id,
                owner_user_id=integ.owner_user_id,
                external_id=keys[0],
                status="active",
                **{k: (v or None) for k, v in values.items()},
            )
            db.add(persona)
            db.flush()
            for key in keys:
                by_external.setdefault(key, persona)
            result.persons_created += 1

        for key in keys:
            ext_map[key] = persona.id

    rel_set = {
        f"{r.persona_id}:{r.related_persona_id}:{r.relation_type}"
        for r in db.query(Relacio).filter(Relacio.arbre_id == integ.arbre_id).all()
    }

    def add_relation(from_id: int, to_id: int, role: str):
        if not from_id or not to_id or from_id == to_id:
            return
        key = f"{from_id}:{to_id}:{role}"
        if key in rel_set:
            return
        rel_set.add(key)
        db.add(Relacio(
            arbre_id=integ.arbre_id,
            persona_id=from_id,
            related_persona_id=to_id,
            relation_type=role,
        ))
        result.relations_created += 1

    for fam in families:
        father = resolve_person_id(ext_map, fam.father_id)
        mother = resolve_person_id(ext_map, fam.mother_id)
        if father and mother:
            add_relation(father, mother, "spouse")
            add_relation(mother, father, "spouse")
        for child_ref in fam.children:
            child = resolve_person_id(ext_map, child_ref)
            if not child:
                continue
            add_relation(child, father, "father")
            add_relation(child, mother, "mother")

    return result


def append_log(db: Session, integ: IntegracioGramps, status: str, message: str):
    db.add(IntegracioGrampsLog(integracio_id=integ.id, status=status, message=message))
    db.flush()
    keep = [
        row.id for row in db.query(IntegracioGrampsLog.id)
        .filter(IntegracioGrampsLog.integracio_id == integ.id)
        .order_by(IntegracioGrampsLog.id.desc())
        .limit(KEEP_LOGS)
        .all()
    ]
    db.query(IntegracioGrampsLog).filter(
        IntegracioGrampsLog.integracio_id == integ.id,
        IntegracioGrampsLog.id.notin_(keep),
    ).delete(synchronize_session=False)


# --------------------------------------------------
# SYNC
# --------------------------------------------------
def build_client(integ: IntegracioGramps, session=None, cancel_event=None) -> GrampsClient:
    token = decrypt_token(integ.token_enc)
    return GrampsClient(
        integ.base_url,
        username=integ.username or "",
        token=token,
        session=session,
        cancel_event=cancel_event,
    )


def sync_integration(
    db: Session,
    integ: IntegracioGramps,
    force: bool = False,
    session=None,
    cancel_event: Optional[threading.Event] = None,
    store: Optional[GrampsSyncStore] = None,
    now: Optional[datetime] = None,
) -> SyncResult:
    store = store or sync_store
    if integ.status == "disabled":
        return SyncResult(skipped=True)
    if not force and store.should_skip(integ.id, now):
        return SyncResult(skipped=True)
    if not store.try_lock(integ.id):
        logger.info("gramps sync: integration %s already running", integ.id)
        return SyncResult(skipped=True)

    try:
        try:
            client = build_client(integ, session=session, cancel_event=cancel_event)
            client.ping()
            people = client.fetch_people()
            people = enrich_people(client, people)
            try:
                families = client.fetch_families()
            except EspaiError as e:
                # people alone still make a useful sync
                logger.info("gramps sync: integration %s families unavailable (%s)", integ.id, e.message)
                families = []
            result = reconcile(db, integ, people, families)
        except CancelledError:
            # shutting down is not a remote failure
            db.rollback()
            raise
        except EspaiError as e:
            db.rollback()
            return _fail(db, integ, e.message, store, now)

        integ.status = "connected"
        integ.last_sync_at = now or datetime.utcnow()
        integ.last_error = None
        message = (
            f"Imported {result.persons_created} persons "
            f"({result.persons_updated} updated), {result.relations_created} relations"
        )
        append_log(db, integ, "ok", message)
        db.commit()
        store.record_success(integ.id)
        logger.info("gramps sync: integration %s ok: %s", integ.id, message)
        return result
    finally:
        store.unlock(integ.id)


def _fail(db: Session, integ: IntegracioGramps, message: str, store: GrampsSyncStore, now) -> SyncResult:
    integ.status = "error"
    integ.last_error = message
    nxt = store.record_failure(integ.id, settings.ESP_GRAMPS_SYNC_BACKOFF_MINUTES, now)
    append_log(db, integ, "error", message)
    db.commit()
    logger.warning("gramps sync: integration %s failed (%s), next attempt after %s", integ.id, message, nxt)
    notify_gramps_error(db, integ, message)
    return SyncResult(error=message)


def sync_all(db: Session, store: Optional[GrampsSyncStore] = None, session=None) -> int:
    """Runs one scheduler pass; returns how many connections synced cleanly."""
    synced = 0
    integrations = db.query(IntegracioGramps).filter(
        IntegracioGramps.status != "disabled"
    ).order_by(IntegracioGramps.id).all()
    for integ in integrations:
        try:
            result = sync_integration(db, integ, force=False, session=session, store=store)
        except Exception:
            db.rollback()
            logger.exception("gramps sync: integration %s crashed", integ.id)
            continue
        if result.ok:
            synced += 1
    return synced


# --------------------------------------------------
# SCHEDULER LOOP
# --------------------------------------------------
class SyncScheduler:
    def __init__(self, session_factory: Callable[[], Session], interval_seconds: Optional[int] = None):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.ESP_GRAMPS_SYNC_INTERVAL_MINUTES * 60
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        db = self.session_factory()
        try:
            return sync_all(db)
        finally:
            db.close()

    def _loop(self):
        logger.info("gramps scheduler: every %ss", self.interval_seconds)
        while not self.stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("gramps scheduler: tick failed")

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="gramps-sync", daemon=True)
        self._thread.start()

    def stop(self):
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

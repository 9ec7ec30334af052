"""
GEDCOM ingestion: queueing uploads and turning a parsed file into the
persons and relations of a tree.
"""
import json
import logging
import os
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import CancelledError, ImportFailedError, NotFoundError
from app.core.gedcom import GedcomParseResult, append_warning, parse
from app.core.matching import rebuild_for
from app.models.arbre import Arbre
from app.models.coincidencia import Coincidencia
from app.models.import_job import ImportJob
from app.models.import_source import ImportSource
from app.models.persona import Persona
from app.models.relacio import Relacio
from app.storage import delete_file, open_stored, save_gedcom

logger = logging.getLogger(__name__)

DUPLICATE_NOTICE = "This file was already uploaded"
FILE_MISSING_NOTICE = "The original GEDCOM file is missing; the tree was cleared"
REIMPORT_NOTICE = "Reimport queued"

MODE_REPLACE = "replace"
MODE_MERGE = "merge"


# --------------------------------------------------
# JOB STATE
# --------------------------------------------------
def set_job_status(
    db: Session,
    job: ImportJob,
    status: str,
    error: Optional[str] = None,
    summary: Optional[Dict] = None,
):
    job.status = status
    if status == "parsing" and job.started_at is None:
        job.started_at = datetime.utcnow()
    if status in ("done", "error"):
        job.finished_at = datetime.utcnow()
    if error is not None:
        job.error_text = error
    if summary is not None:
        job.summary_json = json.dumps(summary)
    db.commit()


def job_summary(job: ImportJob) -> Optional[Dict]:
    if not job.summary_json:
        return None
    try:
        return json.loads(job.summary_json)
    except ValueError:
        return None


def source_is_stale(source: ImportSource) -> bool:
    path = (source.storage_path or "").strip()
    return not path or not os.path.exists(path)


# --------------------------------------------------
# TREES
# --------------------------------------------------
def get_owned_tree(db: Session, owner_id: int, arbre_id: int) -> Arbre:
    tree = db.query(Arbre).filter(Arbre.id == arbre_id).first()
    if not tree or tree.owner_user_id != owner_id:
        raise NotFoundError("tree not found")
    return tree


def create_tree(db: Session, owner_id: int, name: str = "") -> Arbre:
    name = (name or "").strip() or f"GEDCOM {datetime.utcnow().strftime('%Y-%m-%d %H:%M')}"
    tree = Arbre(owner_user_id=owner_id, nom=name, visibility="private", status="active")
    db.add(tree)
    db.commit()
    db.refresh(tree)
    return tree


def clear_tree_data(db: Session, arbre_id: int):
    db.query(Coincidencia).filter(Coincidencia.arbre_id == arbre_id).delete(synchronize_session=False)
    db.query(Relacio).filter(Relacio.arbre_id == arbre_id).delete(synchronize_session=False)
    db.query(Persona).filter(Persona.arbre_id == arbre_id).delete(synchronize_session=False)
    db.commit()


# --------------------------------------------------
# UPLOAD / REIMPORT
# --------------------------------------------------
def latest_import_for_source(db: Session, owner_id: int, source_id: int) -> Optional[ImportJob]:
    return db.query(ImportJob).filter(
        ImportJob.owner_user_id == owner_id,
        ImportJob.font_id == source_id,
    ).order_by(ImportJob.id.desc()).first()


def queue_job(db: Session, owner_id: int, arbre_id: int, source_id: Optional[int], import_type: str, mode: str) -> ImportJob:
    job = ImportJob(
        owner_user_id=owner_id,
        arbre_id=arbre_id,
        font_id=source_id,
        import_type=import_type,
        import_mode=mode,
        status="queued",
        created_by=owner_id,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("imports: queued %s/%s job %s for tree %s", import_type, mode, job.id, arbre_id)
    return job


def queue_gedcom_upload(
    db: Session,
    owner_id: int,
    upload: UploadFile,
    arbre_id: Optional[int] = None,
    tree_name: str = "",
) -> Tuple[Optional[ImportJob], str]:
    """
    Stores the file and queues a replace import.
    Returns (job, notice); a duplicate upload returns the latest import of
    the existing source and DUPLICATE_NOTICE without queueing anything.
    """
    tree = None
    if arbre_id:
        tree = get_owned_tree(db, owner_id, arbre_id)

    path, size, checksum = save_gedcom(owner_id, upload)

    existing = db.query(ImportSource).filter(
        ImportSource.owner_user_id == owner_id,
        ImportSource.checksum_sha256 == checksum,
    ).first()
    if existing is not None:
        if source_is_stale(existing):
            db.delete(existing)
            db.commit()
        else:
            delete_file(path)
            return latest_import_for_source(db, owner_id, existing.id), DUPLICATE_NOTICE

    source = ImportSource(
        owner_user_id=owner_id,
        source_type="gedcom",
        original_filename=upload.filename,
        storage_path=path,
        size_bytes=size,
        checksum_sha256=checksum,
    )
    db.add(source)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent upload of the same bytes won
        db.rollback()
        delete_file(path)
        winner = db.query(ImportSource).filter(
            ImportSource.owner_user_id == owner_id,
            ImportSource.checksum_sha256 == checksum,
        ).first()
        return (latest_import_for_source(db, owner_id, winner.id) if winner else None), DUPLICATE_NOTICE

    if tree is None:
        tree = create_tree(db, owner_id, tree_name)

    return queue_job(db, owner_id, tree.id, source.id, "gedcom", MODE_REPLACE), ""


def queue_gedcom_update(db: Session, owner_id: int, arbre_id: int, upload: UploadFile) -> ImportJob:
    """Stores a new version of a tree's GEDCOM and queues a merge import."""
    tree = get_owned_tree(db, owner_id, arbre_id)
    path, size, checksum = save_gedcom(owner_id, upload)

    same = db.query(ImportSource).filter(
        ImportSource.owner_user_id == owner_id,
        ImportSource.checksum_sha256 == checksum,
    ).first()
    if same is not None and not source_is_stale(same):
        delete_file(path)
        return queue_job(db, owner_id, tree.id, same.id, "gedcom", MODE_MERGE)
    if same is not None:
        same.storage_path = path
        same.original_filename = upload.filename
        same.size_bytes = size
        db.commit()
        return queue_job(db, owner_id, tree.id, same.id, "gedcom", MODE_MERGE)

    source = ImportSource(
        owner_user_id=owner_id,
        source_type="gedcom",
        original_filename=upload.filename,
        storage_path=path,
        size_bytes=size,
        checksum_sha256=checksum,
    )
    db.add(source)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        delete_file(path)
        raise
    return queue_job(db, owner_id, tree.id, source.id, "gedcom", MODE_MERGE)


def reimport(db: Session, owner_id: int, import_id: int) -> ImportJob:
    job = db.query(ImportJob).filter(ImportJob.id == import_id).first()
    if not job or job.owner_user_id != owner_id:
        raise NotFoundError("import not found")
    if not job.font_id:
        raise ImportFailedError("import source missing")
    source = db.query(ImportSource).filter(ImportSource.id == job.font_id).first()
    if not source:
        raise ImportFailedError("import source missing")
    if not source.storage_path:
        raise ImportFailedError("stored file is missing")
    return queue_job(db, owner_id, job.arbre_id, source.id, "gedcom", MODE_REPLACE)


def _cleanup_tree_gedcom(db: Session, owner_id: int, arbre_id: int, imports: List[ImportJob]):
    clear_tree_data(db, arbre_id)
    source_ids = {imp.font_id for imp in imports if imp.import_type == "gedcom" and imp.font_id}
    db.query(ImportJob).filter(ImportJob.arbre_id == arbre_id).delete(synchronize_session=False)
    db.commit()
    for source_id in source_ids:
        if db.query(ImportJob).filter(ImportJob.font_id == source_id).count() > 0:
            continue
        source = db.query(ImportSource).filter(ImportSource.id == source_id).first()
        if not source or source.owner_user_id != owner_id:
            continue
        delete_file(source.storage_path)
        db.delete(source)
    db.commit()


def reimport_tree(db: Session, owner_id: int, arbre_id: int) -> Tuple[Optional[ImportJob], str]:
    """
    Clears the tree and queues a replace import of its latest GEDCOM.
    When the original file is gone the tree is cleared and its imports
    dropped instead.
    """
    get_owned_tree(db, owner_id, arbre_id)
    imports = db.query(ImportJob).filter(ImportJob.arbre_id == arbre_id).order_by(ImportJob.id.desc()).all()
    latest = next((imp for imp in imports if imp.import_type == "gedcom" and imp.font_id), None)

    source = None
    if latest is not None:
        source = db.query(ImportSource).filter(ImportSource.id == latest.font_id).first()
    if source is None or source.owner_user_id != owner_id or source_is_stale(source):
        _cleanup_tree_gedcom(db, owner_id, arbre_id, imports)
        return None, FILE_MISSING_NOTICE

    clear_tree_data(db, arbre_id)
    return reimport(db, owner_id, latest.id), REIMPORT_NOTICE


# --------------------------------------------------
# NORMALISER
# --------------------------------------------------
def _check_cancelled(cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError()


def _merge_value(persona: Persona, attr: str, value: str):
    value = (value or "").strip()
    if value and (getattr(persona, attr) or "").strip() != value:
        setattr(persona, attr, value)


def normalise(
    db: Session,
    job: ImportJob,
    result: GedcomParseResult,
    mode: str = MODE_REPLACE,
    cancel_event: Optional[threading.Event] = None,
) -> Dict:
    """
    Writes parsed persons and families into the job's tree and returns the
    import summary. Nothing is committed until every relation is written; the
    job is then left in status persisted and the caller marks it done.
    """
    set_job_status(db, job, "normalizing")

    existing = db.query(Persona).filter(Persona.arbre_id == job.arbre_id).all()
    by_external = {p.external_id: p for p in existing if p.external_id}
    warnings = list(result.warnings)
    warnings_total = result.warnings_total
    person_ids: Dict[str, int] = {}

    for gp in result.persons:
        _check_cancelled(cancel_event)
        ext_id = gp.id.strip()
        found = by_external.get(ext_id) if ext_id else None

        if found is not None and mode == MODE_MERGE:
            for attr, value in (
                ("nom", gp.given_name),
                ("cognom1", gp.surname),
                ("nom_complet", gp.full_name),
                ("sexe", gp.sex),
                ("data_naixement", gp.birth_date),
                ("lloc_naixement", gp.birth_place),
                ("data_defuncio", gp.death_date),
                ("lloc_defuncio", gp.death_place),
            ):
                _merge_value(found, attr, value)
            person_ids[ext_id] = found.id
            continue

        if found is not None:
            warnings_total += 1
            append_warning(warnings, f"Person {ext_id} already exists in the tree")
            person_ids[ext_id] = found.id
            continue

        persona = Persona(
            owner_user_id=job.owner_user_id,
            arbre_id=job.arbre_id,
            external_id=ext_id or None,
            nom=gp.given_name or None,
            cognom1=gp.surname or None,
            nom_complet=gp.full_name or None,
            sexe=gp.sex or None,
            data_naixement=gp.birth_date or None,
            lloc_naixement=gp.birth_place or None,
            data_defuncio=gp.death_date or None,
            lloc_defuncio=gp.death_place or None,
            status="active",
        )
        db.add(persona)
        db.flush()
        if ext_id:
            by_external[ext_id] = persona
            person_ids[ext_id] = persona.id

    rel_set = {
        (r.persona_id, r.related_persona_id, r.relation_type)
        for r in db.query(Relacio).filter(Relacio.arbre_id == job.arbre_id).all()
    }
    relations = 0

    def add_relation(from_id: int, to_id: int, role: str) -> int:
        if not from_id or not to_id or from_id == to_id:
            return 0
        key = (from_id, to_id, role)
        if key in rel_set:
            return 0
        rel_set.add(key)
        db.add(Relacio(arbre_id=job.arbre_id, persona_id=from_id, related_persona_id=to_id, relation_type=role))
        return 1

    for fam in result.families:
        _check_cancelled(cancel_event)
        husb = person_ids.get(fam.husband, 0)
        wife = person_ids.get(fam.wife, 0)
        if husb and wife:
            relations += add_relation(husb, wife, "spouse")
            relations += add_relation(wife, husb, "spouse")
        for child in fam.children:
            child_id = person_ids.get(child, 0)
            if not child_id:
                continue
            relations += add_relation(child_id, husb, "father")
            relations += add_relation(child_id, wife, "mother")

    summary = {
        "persons": len(result.persons),
        "families": len(result.families),
        "relations": relations,
        "warnings": warnings,
        "warnings_total": warnings_total,
        "errors": list(result.errors),
        "errors_total": len(result.errors),
    }
    job.progress_total = summary["persons"] + relations
    job.progress_done = summary["persons"] + relations
    db.flush()
    # persons, relations and the persisted status commit together
    set_job_status(db, job, "persisted")
    return summary


def run_gedcom_job(db: Session, job: ImportJob, cancel_event: Optional[threading.Event] = None) -> Dict:
    if not job.font_id:
        raise ImportFailedError("import source missing")
    source = db.query(ImportSource).filter(ImportSource.id == job.font_id).first()
    if not source:
        raise ImportFailedError("import source missing")

    set_job_status(db, job, "parsing")
    with open_stored(source.storage_path) as fh:
        result = parse(fh)
    if result.errors:
        set_job_status(db, job, "parsing", summary={"persons": 0, "families": 0, "relations": 0, "errors": result.errors})
        raise ImportFailedError(result.errors[0])

    _check_cancelled(cancel_event)
    mode = MODE_MERGE if (job.import_mode or "").strip().lower() == MODE_MERGE else MODE_REPLACE
    summary = normalise(db, job, result, mode, cancel_event)
    set_job_status(db, job, "done", summary=summary)
    logger.info(
        "imports: job %s done (%d persons, %d relations)",
        job.id, summary["persons"], summary["relations"],
    )

    try:
        rebuild_for(db, job.owner_user_id, job.arbre_id)
    except Exception:
        db.rollback()
        logger.exception("imports: matching rebuild for tree %s failed", job.arbre_id)
    return summary

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session
from typing import List, Optional

from app.database import get_db
from app.auth import get_current_user
from app.core.errors import EspaiError, NotFoundError, to_http
from app.core.ingest import (
    REIMPORT_NOTICE,
    job_summary,
    queue_gedcom_update,
    queue_gedcom_upload,
    reimport,
)
from app.models.import_job import ImportJob
from app.schemas.import_schema import ImportOut, ImportQueued

router = APIRouter(prefix="/imports", tags=["Imports"])


def import_out(job: ImportJob) -> ImportOut:
    out = ImportOut.model_validate(job)
    out.summary = job_summary(job)
    return out


# --------------------------------------------------
# UPLOAD
# --------------------------------------------------
@router.post("/gedcom", response_model=ImportQueued)
async def upload_gedcom(
    file: UploadFile = File(...),
    arbre_id: Optional[int] = Form(None),
    tree_name: str = Form(""),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        job, notice = queue_gedcom_upload(db, current_user.id, file, arbre_id=arbre_id, tree_name=tree_name)
    except EspaiError as e:
        raise to_http(e)
    return {"job": import_out(job) if job else None, "notice": notice}


@router.post("/gedcom/{arbre_id}/update", response_model=ImportQueued)
async def update_gedcom(
    arbre_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        job = queue_gedcom_update(db, current_user.id, arbre_id, file)
    except EspaiError as e:
        raise to_http(e)
    return {"job": import_out(job), "notice": ""}


# --------------------------------------------------
# LIST / DETAIL
# --------------------------------------------------
@router.get("/", response_model=List[ImportOut])
def list_imports(
    arbre_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    q = db.query(ImportJob).filter(ImportJob.owner_user_id == current_user.id)
    if arbre_id:
        q = q.filter(ImportJob.arbre_id == arbre_id)
    return [import_out(job) for job in q.order_by(ImportJob.id.desc()).limit(100).all()]


@router.get("/{import_id}", response_model=ImportOut)
def get_import(
    import_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    job = db.query(ImportJob).filter(ImportJob.id == import_id).first()
    if not job or job.owner_user_id != current_user.id:
        raise to_http(NotFoundError("import not found"))
    return import_out(job)


@router.post("/{import_id}/reimport", response_model=ImportQueued)
def reimport_import(
    import_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        job = reimport(db, current_user.id, import_id)
    except EspaiError as e:
        raise to_http(e)
    return {"job": import_out(job), "notice": REIMPORT_NOTICE}

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.auth import get_current_user, require_admin
from app.core import drafts
from app.core.errors import EspaiError, to_http
from app.schemas.content_schema import (
    DraftCreate,
    DraftUpdate,
    MapCreate,
    ModerationRequest,
    ParentOut,
    VersionOut,
)

router = APIRouter(prefix="/content", tags=["Moderated content"])


def _kind(name: str) -> drafts.DraftKind:
    try:
        return drafts.get_kind(name)
    except EspaiError as e:
        raise to_http(e)


def parent_out(db: Session, kind: drafts.DraftKind, parent) -> ParentOut:
    current = drafts.current_version(db, kind, parent)
    return ParentOut(
        id=parent.id,
        municipi_id=parent.municipi_id,
        nom=getattr(parent, "nom", None),
        current=VersionOut.model_validate(current) if current else None,
    )


# --------------------------------------------------
# PARENTS
# --------------------------------------------------
@router.post("/municipis/{municipi_id}/historia", response_model=ParentOut)
def open_historia(
    municipi_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        historia = drafts.ensure_historia(db, municipi_id)
    except EspaiError as e:
        raise to_http(e)
    return parent_out(db, drafts.HISTORIA_GENERAL, historia)


@router.post("/municipis/{municipi_id}/fets", response_model=ParentOut)
def new_fet(
    municipi_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        fet = drafts.create_fet(db, municipi_id, current_user.id)
    except EspaiError as e:
        raise to_http(e)
    return parent_out(db, drafts.HISTORIA_FET, fet)


@router.post("/municipis/{municipi_id}/events", response_model=ParentOut)
def new_event(
    municipi_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        event = drafts.create_event(db, municipi_id, current_user.id)
    except EspaiError as e:
        raise to_http(e)
    return parent_out(db, drafts.EVENT, event)


@router.post("/municipis/{municipi_id}/mapes", response_model=ParentOut)
def new_mapa(
    municipi_id: int,
    payload: MapCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        mapa = drafts.create_mapa(db, municipi_id, payload.nom, current_user.id)
    except EspaiError as e:
        raise to_http(e)
    return parent_out(db, drafts.MAPA, mapa)


@router.get("/{kind}/pending", response_model=List[VersionOut])
def pending(
    kind: str,
    db: Session = Depends(get_db),
    moderator=Depends(require_admin),
):
    return drafts.list_pending(db, _kind(kind))


@router.get("/{kind}/{parent_id}", response_model=ParentOut)
def get_parent(
    kind: str,
    parent_id: int,
    db: Session = Depends(get_db),
):
    k = _kind(kind)
    try:
        parent = drafts.get_parent(db, k, parent_id)
    except EspaiError as e:
        raise to_http(e)
    return parent_out(db, k, parent)


@router.get("/{kind}/{parent_id}/versions", response_model=List[VersionOut])
def list_versions(
    kind: str,
    parent_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return drafts.list_versions(db, _kind(kind), parent_id)


# --------------------------------------------------
# DRAFTS
# --------------------------------------------------
@router.post("/{kind}/{parent_id}/drafts", response_model=VersionOut)
def create_draft(
    kind: str,
    parent_id: int,
    payload: DraftCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        return drafts.create_draft(db, _kind(kind), parent_id, current_user.id, force_new=payload.force_new)
    except EspaiError as e:
        raise to_http(e)


@router.put("/{kind}/versions/{version_id}", response_model=VersionOut)
def save_draft(
    kind: str,
    version_id: int,
    payload: DraftUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    values = payload.model_dump(exclude={"lock_version"})
    try:
        return drafts.update_draft(db, _kind(kind), version_id, current_user, values, payload.lock_version)
    except EspaiError as e:
        raise to_http(e)


@router.post("/{kind}/versions/{version_id}/submit", response_model=VersionOut)
def submit(
    kind: str,
    version_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        return drafts.submit(db, _kind(kind), version_id, current_user)
    except EspaiError as e:
        raise to_http(e)


@router.post("/{kind}/versions/{version_id}/withdraw", response_model=VersionOut)
def withdraw(
    kind: str,
    version_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        return drafts.withdraw(db, _kind(kind), version_id, current_user)
    except EspaiError as e:
        raise to_http(e)


# --------------------------------------------------
# MODERATION
# --------------------------------------------------
@router.post("/{kind}/versions/{version_id}/approve", response_model=VersionOut)
def approve(
    kind: str,
    version_id: int,
    payload: ModerationRequest,
    db: Session = Depends(get_db),
    moderator=Depends(require_admin),
):
    try:
        return drafts.approve(db, _kind(kind), version_id, moderator, payload.notes or "")
    except EspaiError as e:
        raise to_http(e)


@router.post("/{kind}/versions/{version_id}/reject", response_model=VersionOut)
def reject(
    kind: str,
    version_id: int,
    payload: ModerationRequest,
    db: Session = Depends(get_db),
    moderator=Depends(require_admin),
):
    try:
        return drafts.reject(db, _kind(kind), version_id, moderator, payload.notes or "")
    except EspaiError as e:
        raise to_http(e)


@router.post("/{kind}/{parent_id}/rollback/{version_id}", response_model=ParentOut)
def rollback(
    kind: str,
    parent_id: int,
    version_id: int,
    db: Session = Depends(get_db),
    moderator=Depends(require_admin),
):
    k = _kind(kind)
    try:
        parent = drafts.rollback(db, k, parent_id, version_id, moderator)
    except EspaiError as e:
        raise to_http(e)
    return parent_out(db, k, parent)

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.auth import get_current_user
from app.core import gramps_connections
from app.core.errors import EspaiError, to_http
from app.routers.import_router import import_out
from app.schemas.gramps_schema import (
    GrampsConnectRequest,
    GrampsConnectionOut,
    GrampsLogOut,
)
from app.schemas.import_schema import ImportOut

router = APIRouter(prefix="/gramps", tags=["Gramps"])


def connection_out(integ, logs) -> GrampsConnectionOut:
    return GrampsConnectionOut(
        id=integ.id,
        arbre_id=integ.arbre_id,
        base_url=integ.base_url,
        username=integ.username,
        status=integ.status,
        last_sync_at=integ.last_sync_at,
        last_error=integ.last_error,
        logs=[GrampsLogOut.model_validate(l) for l in logs],
    )


@router.post("/connections", response_model=GrampsConnectionOut)
def connect(
    payload: GrampsConnectRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        integ = gramps_connections.connect(
            db,
            current_user.id,
            base_url=payload.base_url,
            token=payload.token,
            username=payload.username or "",
            arbre_id=payload.arbre_id,
            tree_name=payload.tree_name or "",
        )
    except EspaiError as e:
        raise to_http(e)
    return connection_out(integ, gramps_connections.recent_logs(db, integ.id))


@router.get("/connections", response_model=List[GrampsConnectionOut])
def list_connections(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return [
        connection_out(integ, logs)
        for integ, logs in gramps_connections.list_connections(db, current_user.id)
    ]


@router.post("/connections/{integ_id}/sync", response_model=ImportOut)
def sync_now(
    integ_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        job = gramps_connections.queue_sync(db, current_user.id, integ_id)
    except EspaiError as e:
        raise to_http(e)
    return import_out(job)


@router.post("/connections/{integ_id}/disable", response_model=GrampsConnectionOut)
def disable(
    integ_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        integ = gramps_connections.set_enabled(db, current_user.id, integ_id, False)
    except EspaiError as e:
        raise to_http(e)
    return connection_out(integ, gramps_connections.recent_logs(db, integ.id))


@router.post("/connections/{integ_id}/enable", response_model=GrampsConnectionOut)
def enable(
    integ_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        integ = gramps_connections.set_enabled(db, current_user.id, integ_id, True)
    except EspaiError as e:
        raise to_http(e)
    return connection_out(integ, gramps_connections.recent_logs(db, integ.id))

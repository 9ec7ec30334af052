from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.auth import get_current_user
from app.core import matching
from app.core.errors import EspaiError, to_http
from app.core.ingest import get_owned_tree
from app.schemas.match_schema import BulkDecisionRequest, DecisionRequest, MatchOut

router = APIRouter(prefix="/matches", tags=["Matches"])


@router.get("/", response_model=List[MatchOut])
def list_matches(
    status: str = "pending",
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return matching.list_matches(db, current_user.id, status)


@router.post("/{match_id}/decision")
def decide(
    match_id: int,
    payload: DecisionRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        match = matching.decide(db, current_user.id, match_id, payload.decision)
    except EspaiError as e:
        raise to_http(e)
    return {"id": match.id, "status": match.status}


@router.post("/bulk")
def decide_bulk(
    payload: BulkDecisionRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        applied = matching.decide_bulk(db, current_user.id, payload.ids, payload.decision)
    except EspaiError as e:
        raise to_http(e)
    return {"applied": applied}


@router.post("/rebuild/{arbre_id}")
def rebuild(
    arbre_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        get_owned_tree(db, current_user.id, arbre_id)
    except EspaiError as e:
        raise to_http(e)
    created = matching.rebuild_for(db, current_user.id, arbre_id)
    return {"created": created}

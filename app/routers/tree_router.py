from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.auth import get_current_user
from app.core.errors import EspaiError, to_http
from app.core.ingest import get_owned_tree, reimport_tree
from app.models.arbre import Arbre
from app.models.persona import Persona
from app.models.relacio import Relacio
from app.routers.import_router import import_out
from app.schemas.import_schema import ImportQueued
from app.schemas.tree_schema import (
    TreeCreate,
    TreeUpdate,
    TreeOut,
    PersonaOut,
    RelacioOut,
)

router = APIRouter(prefix="/trees", tags=["Trees"])

VISIBILITIES = ("private", "restricted", "public")
STATUSES = ("active", "archived")


def _owned_or_404(db: Session, owner_id: int, arbre_id: int) -> Arbre:
    try:
        return get_owned_tree(db, owner_id, arbre_id)
    except EspaiError as e:
        raise to_http(e)


# --------------------------------------------------
# CREATE / LIST / UPDATE
# --------------------------------------------------
@router.post("/", response_model=TreeOut)
def create_tree(
    payload: TreeCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    nom = payload.nom.strip()
    if not nom:
        raise HTTPException(status_code=400, detail="Name is required")
    if payload.visibility not in VISIBILITIES:
        raise HTTPException(status_code=400, detail="Invalid visibility")

    tree = Arbre(
        owner_user_id=current_user.id,
        nom=nom,
        visibility=payload.visibility,
        status="active",
    )
    db.add(tree)
    db.commit()
    db.refresh(tree)
    return tree


@router.get("/", response_model=List[TreeOut])
def list_trees(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return (
        db.query(Arbre)
        .filter(Arbre.owner_user_id == current_user.id)
        .order_by(Arbre.id)
        .all()
    )


@router.patch("/{arbre_id}", response_model=TreeOut)
def update_tree(
    arbre_id: int,
    payload: TreeUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    tree = _owned_or_404(db, current_user.id, arbre_id)

    if payload.nom is not None:
        if not payload.nom.strip():
            raise HTTPException(status_code=400, detail="Name is required")
        tree.nom = payload.nom.strip()
    if payload.visibility is not None:
        if payload.visibility not in VISIBILITIES:
            raise HTTPException(status_code=400, detail="Invalid visibility")
        tree.visibility = payload.visibility
    if payload.status is not None:
        if payload.status not in STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        tree.status = payload.status

    db.commit()
    db.refresh(tree)
    return tree


# --------------------------------------------------
# CONTENT
# --------------------------------------------------
@router.get("/{arbre_id}/persons", response_model=List[PersonaOut])
def list_persons(
    arbre_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    _owned_or_404(db, current_user.id, arbre_id)
    return (
        db.query(Persona)
        .filter(Persona.arbre_id == arbre_id)
        .order_by(Persona.id)
        .all()
    )


@router.get("/{arbre_id}/relations", response_model=List[RelacioOut])
def list_relations(
    arbre_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    _owned_or_404(db, current_user.id, arbre_id)
    return (
        db.query(Relacio)
        .filter(Relacio.arbre_id == arbre_id)
        .order_by(Relacio.id)
        .all()
    )


# --------------------------------------------------
# REIMPORT
# --------------------------------------------------
@router.post("/{arbre_id}/reimport", response_model=ImportQueued)
def reimport(
    arbre_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        job, notice = reimport_tree(db, current_user.id, arbre_id)
    except EspaiError as e:
        raise to_http(e)
    return {"job": import_out(job) if job else None, "notice": notice}

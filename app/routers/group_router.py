from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from app.database import get_db
from app.auth import get_current_user
from app.core import groups
from app.core.errors import EspaiError, to_http
from app.schemas.group_schema import (
    ChangeOut,
    ConflictOut,
    GroupCreate,
    GroupDetailOut,
    GroupOut,
    InviteRequest,
    LinkTreeRequest,
    MemberOut,
    RoleChangeRequest,
)

router = APIRouter(prefix="/groups", tags=["Groups"])


def group_out(grup, member) -> GroupOut:
    return GroupOut(
        id=grup.id,
        nom=grup.nom,
        descripcio=grup.descripcio,
        owner_user_id=grup.owner_user_id,
        role=member.role,
        member_status=member.status,
    )


# --------------------------------------------------
# GROUPS
# --------------------------------------------------
@router.post("/", response_model=GroupOut)
def create_group(
    payload: GroupCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        grup = groups.create_group(db, current_user.id, payload.nom, payload.descripcio or "")
        _, member = groups.load_access(db, current_user.id, grup.id)
    except EspaiError as e:
        raise to_http(e)
    return group_out(grup, member)


@router.get("/", response_model=List[GroupOut])
def my_groups(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return [group_out(g, m) for g, m in groups.list_groups_for_user(db, current_user.id)]


@router.get("/{grup_id}", response_model=GroupDetailOut)
def group_detail(
    grup_id: int,
    conflict_status: str = "",
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        grup, member = groups.require_role(db, current_user.id, grup_id, "viewer")
    except EspaiError as e:
        raise to_http(e)
    return {
        "group": group_out(grup, member),
        "members": groups.members_view(db, grup_id),
        "trees": groups.trees_view(db, grup_id),
        "conflicts": groups.conflicts_view(db, grup_id, conflict_status),
    }


@router.get("/{grup_id}/changes", response_model=List[ChangeOut])
def group_changes(
    grup_id: int,
    actor_id: Optional[int] = None,
    action: str = "",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        groups.require_role(db, current_user.id, grup_id, "viewer")
    except EspaiError as e:
        raise to_http(e)
    return groups.changes_view(db, grup_id, actor_id, action, date_from, date_to)


# --------------------------------------------------
# MEMBERS
# --------------------------------------------------
@router.post("/{grup_id}/invite", response_model=MemberOut)
def invite(
    grup_id: int,
    payload: InviteRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        member = groups.invite_member(db, current_user.id, grup_id, payload.email, payload.role)
    except EspaiError as e:
        raise to_http(e)
    return _member_out(member)


@router.post("/{grup_id}/accept")
def accept(
    grup_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        member = groups.accept_invite(db, current_user.id, grup_id)
    except EspaiError as e:
        raise to_http(e)
    return {"status": member.status}


@router.post("/{grup_id}/decline")
def decline(
    grup_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        member = groups.decline_invite(db, current_user.id, grup_id)
    except EspaiError as e:
        raise to_http(e)
    return {"status": member.status}


@router.patch("/{grup_id}/members/{user_id}", response_model=MemberOut)
def change_role(
    grup_id: int,
    user_id: int,
    payload: RoleChangeRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        member = groups.change_member_role(db, current_user.id, grup_id, user_id, payload.role)
    except EspaiError as e:
        raise to_http(e)
    return _member_out(member)


@router.delete("/{grup_id}/members/{user_id}")
def remove_member(
    grup_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        groups.remove_member(db, current_user.id, grup_id, user_id)
    except EspaiError as e:
        raise to_http(e)
    return {"message": "Member removed"}


def _member_out(member) -> MemberOut:
    return MemberOut(
        user_id=member.user_id,
        name=groups.user_display_name(member.user),
        email=member.user.email if member.user else "",
        role=member.role,
        status=member.status,
        joined_at=member.joined_at,
    )


# --------------------------------------------------
# TREES
# --------------------------------------------------
@router.post("/{grup_id}/trees")
def link_tree(
    grup_id: int,
    payload: LinkTreeRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        link = groups.link_tree(db, current_user.id, grup_id, payload.arbre_id)
    except EspaiError as e:
        raise to_http(e)
    return {"arbre_id": link.arbre_id, "status": link.status}


@router.delete("/{grup_id}/trees/{arbre_id}")
def unlink_tree(
    grup_id: int,
    arbre_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        link = groups.unlink_tree(db, current_user.id, grup_id, arbre_id)
    except EspaiError as e:
        raise to_http(e)
    return {"arbre_id": link.arbre_id, "status": link.status}


# --------------------------------------------------
# CONFLICTS
# --------------------------------------------------
@router.post("/{grup_id}/conflicts/rebuild")
def rebuild_conflicts(
    grup_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        created = groups.rebuild_conflicts_for(db, current_user.id, grup_id)
    except EspaiError as e:
        raise to_http(e)
    return {"created": created}


@router.post("/{grup_id}/conflicts/{conflict_id}/resolve", response_model=ConflictOut)
def resolve_conflict(
    grup_id: int,
    conflict_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        return groups.resolve_conflict(db, current_user.id, grup_id, conflict_id)
    except EspaiError as e:
        raise to_http(e)

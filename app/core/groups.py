import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.core.matching import display_name, persona_year
from app.core.normalize import normalize_group_token
from app.core.notifications import notify_group_conflicts
from app.models.arbre import Arbre
from app.models.grup import Grup
from app.models.grup_arbre import GrupArbre
from app.models.grup_canvi import GrupCanvi
from app.models.grup_conflicte import GrupConflicte
from app.models.grup_membre import GrupMembre
from app.models.persona import Persona
from app.models.user import User

logger = logging.getLogger(__name__)

ROLE_RANK = {"viewer": 1, "member": 2, "admin": 3, "owner": 4}

CONFLICT_PREFIX = "Possible duplicat: "


# --------------------------------------------------
# ACCESS
# --------------------------------------------------
def is_valid_role(role: str) -> bool:
    return (role or "").strip() in ROLE_RANK


def role_allows(member: Optional[GrupMembre], minimum: str) -> bool:
    if member is None or (member.status or "").strip() != "active":
        return False
    return ROLE_RANK.get((member.role or "").strip(), 0) >= ROLE_RANK[minimum]


def get_member(db: Session, grup_id: int, user_id: int) -> Optional[GrupMembre]:
    return db.query(GrupMembre).filter(
        GrupMembre.grup_id == grup_id,
        GrupMembre.user_id == user_id,
    ).first()


def load_access(db: Session, user_id: int, grup_id: int) -> Tuple[Grup, GrupMembre]:
    """
    Groups are invisible to anyone who is not (or no longer) a member,
    so a missing membership reads as not found.
    """
    grup = db.query(Grup).filter(Grup.id == grup_id).first()
    if not grup:
        raise NotFoundError("group not found")
    member = get_member(db, grup_id, user_id)
    if member is None or member.status == "removed":
        raise NotFoundError("group not found")
    return grup, member


def require_role(db: Session, user_id: int, grup_id: int, minimum: str) -> Tuple[Grup, GrupMembre]:
    grup, member = load_access(db, user_id, grup_id)
    if not role_allows(member, minimum):
        raise ForbiddenError("not allowed")
    return grup, member


def log_change(
    db: Session,
    grup_id: int,
    actor_id: Optional[int],
    action: str,
    object_type: str = "",
    object_id: Optional[int] = None,
    payload: Optional[Dict] = None,
) -> GrupCanvi:
    row = GrupCanvi(
        grup_id=grup_id,
        actor_id=actor_id or None,
        action=action,
        object_type=object_type or None,
        object_id=object_id if object_id and object_id > 0 else None,
        payload_json=json.dumps(payload) if payload is not None else None,
    )
    db.add(row)
    return row


# --------------------------------------------------
# GROUPS & MEMBERS
# --------------------------------------------------
def create_group(db: Session, user_id: int, nom: str, descripcio: str = "") -> Grup:
    nom = (nom or "").strip()
    if not nom:
        raise ValidationError("name is required", field="nom")
    grup = Grup(owner_user_id=user_id, nom=nom, descripcio=(descripcio or "").strip() or None, status="active")
    db.add(grup)
    db.flush()
    db.add(GrupMembre(
        grup_id=grup.id,
        user_id=user_id,
        role="owner",
        status="active",
        joined_at=datetime.utcnow(),
    ))
    log_change(db, grup.id, user_id, "group_created", "group", grup.id, {"name": nom})
    db.commit()
    db.refresh(grup)
    return grup


def invite_member(db: Session, actor_id: int, grup_id: int, email: str, role: str = "member") -> GrupMembre:
    grup, _ = require_role(db, actor_id, grup_id, "admin")
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email is required", field="email")
    role = (role or "").strip()
    if not is_valid_role(role) or role == "owner":
        role = "member"

    target = db.query(User).filter(User.email == email).first()
    if not target:
        raise NotFoundError("user not found")

    existing = get_member(db, grup.id, target.id)
    if existing is not None and existing.status == "active":
        raise ConflictError("user is already a member")
    if existing is not None:
        existing.role = role
        existing.status = "invited"
        existing.joined_at = None
        member = existing
    else:
        member = GrupMembre(grup_id=grup.id, user_id=target.id, role=role, status="invited")
        db.add(member)

    log_change(db, grup.id, actor_id, "member_invited", "user", target.id, {"email": email, "role": role})
    db.commit()
    db.refresh(member)
    return member


def _pending_invite(db: Session, user_id: int, grup_id: int) -> GrupMembre:
    member = get_member(db, grup_id, user_id)
    if member is None or member.status != "invited":
        raise NotFoundError("invitation not found")
    return member


def accept_invite(db: Session, user_id: int, grup_id: int) -> GrupMembre:
    member = _pending_invite(db, user_id, grup_id)
    member.status = "active"
    member.joined_at = datetime.utcnow()
    log_change(db, grup_id, user_id, "member_accepted", "user", user_id)
    db.commit()
    return member


def decline_invite(db: Session, user_id: int, grup_id: int) -> GrupMembre:
    member = _pending_invite(db, user_id, grup_id)
    member.status = "removed"
    member.joined_at = None
    log_change(db, grup_id, user_id, "member_declined", "user", user_id)
    db.commit()
    return member


def change_member_role(db: Session, actor_id: int, grup_id: int, target_user_id: int, role: str) -> GrupMembre:
    grup, actor = require_role(db, actor_id, grup_id, "admin")
    role = (role or "").strip()
    if not is_valid_role(role):
        raise ValidationError("invalid role", field="role")

    target = get_member(db, grup_id, target_user_id)
    if target is None or target.status == "removed":
        raise NotFoundError("member not found")
    if target.role == role:
        return target

    if target.role == "owner" or role == "owner":
        if actor.role != "owner":
            raise ForbiddenError("only the owner can grant or revoke ownership")
        if target.role == "owner":
            raise ValidationError("transfer ownership to another member instead", field="role")
        if target.status != "active":
            raise ValidationError("ownership can only go to an active member", field="user_id")
        # a group has exactly one owner; granting it hands it over
        actor.role = "admin"
        grup.owner_user_id = target.user_id

    target.role = role
    log_change(db, grup_id, actor_id, "member_role", "user", target_user_id, {"role": role})
    db.commit()
    db.refresh(target)
    return target


def remove_member(db: Session, actor_id: int, grup_id: int, target_user_id: int) -> GrupMembre:
    _, actor = require_role(db, actor_id, grup_id, "admin")
    target = get_member(db, grup_id, target_user_id)
    if target is None or target.status == "removed":
        raise NotFoundError("member not found")
    if target.role == "owner":
        if actor.role != "owner":
            raise ForbiddenError("only the owner can remove the owner")
        raise ValidationError("transfer ownership before leaving the group", field="user_id")

    target.status = "removed"
    log_change(db, grup_id, actor_id, "member_removed", "user", target_user_id)
    db.commit()
    return target


# --------------------------------------------------
# TREES
# --------------------------------------------------
def link_tree(db: Session, actor_id: int, grup_id: int, arbre_id: int) -> GrupArbre:
    grup, _ = require_role(db, actor_id, grup_id, "member")
    tree = db.query(Arbre).filter(Arbre.id == arbre_id).first()
    if not tree or tree.owner_user_id != actor_id:
        raise NotFoundError("tree not found")

    link = db.query(GrupArbre).filter(GrupArbre.grup_id == grup.id, GrupArbre.arbre_id == arbre_id).first()
    if link is None:
        link = GrupArbre(grup_id=grup.id, arbre_id=arbre_id, added_by=actor_id, status="active")
        db.add(link)
    else:
        link.status = "active"
    log_change(db, grup.id, actor_id, "tree_linked", "tree", arbre_id, {"name": tree.nom})
    db.commit()
    db.refresh(link)

    rebuild_conflicts(db, grup.id)
    return link


def unlink_tree(db: Session, actor_id: int, grup_id: int, arbre_id: int) -> GrupArbre:
    grup, member = load_access(db, actor_id, grup_id)
    if member.status != "active":
        raise ForbiddenError("not allowed")
    tree = db.query(Arbre).filter(Arbre.id == arbre_id).first()
    link = db.query(GrupArbre).filter(GrupArbre.grup_id == grup.id, GrupArbre.arbre_id == arbre_id).first()
    if not tree or link is None:
        raise NotFoundError("tree not found")
    if not role_allows(member, "admin") and tree.owner_user_id != actor_id:
        raise ForbiddenError("not allowed")

    link.status = "removed"
    log_change(db, grup.id, actor_id, "tree_unlinked", "tree", arbre_id, {"name": tree.nom})
    db.commit()
    return link


# --------------------------------------------------
# CONFLICTS
# --------------------------------------------------
def person_key(p: Persona) -> str:
    name = display_name(p).strip().lower()
    if not name or name == "-":
        return ""
    parts = [normalize_group_token(name)]
    year = persona_year(p)
    if year > 0:
        parts.append(str(year))
    return " ".join(parts)


def rebuild_conflicts(db: Session, grup_id: int) -> int:
    """
    Flags persons sharing a name (and reference year) across the group's
    linked trees. Existing conflicts with the same summary are never
    duplicated, whatever their status.
    """
    by_key: Dict[str, List[Persona]] = {}
    links = db.query(GrupArbre).filter(GrupArbre.grup_id == grup_id, GrupArbre.status == "active").all()
    for link in links:
        persones = db.query(Persona).filter(Persona.arbre_id == link.arbre_id).order_by(Persona.id).all()
        for p in persones:
            status = (p.status or "").strip()
            if status and status != "active":
                continue
            key = person_key(p)
            if key:
                by_key.setdefault(key, []).append(p)

    existing = {
        c.summary for c in db.query(GrupConflicte.summary).filter(GrupConflicte.grup_id == grup_id).all()
        if c.summary
    }

    created = 0
    for key in sorted(by_key):
        persones = by_key[key]
        if len(persones) < 2:
            continue
        summary = CONFLICT_PREFIX + key
        if summary in existing:
            continue
        existing.add(summary)
        db.add(GrupConflicte(
            grup_id=grup_id,
            arbre_id=persones[0].arbre_id,
            conflict_type="persona",
            status="pending",
            summary=summary,
            details_json=json.dumps({"persona_ids": [p.id for p in persones], "key": key}),
        ))
        created += 1
    db.commit()

    if created:
        logger.info("groups: %d new conflicts in group %s", created, grup_id)
        notify_group_conflicts(db, grup_id, created)
    return created


def rebuild_conflicts_for(db: Session, actor_id: int, grup_id: int) -> int:
    require_role(db, actor_id, grup_id, "admin")
    count = rebuild_conflicts(db, grup_id)
    log_change(db, grup_id, actor_id, "conflicts_rebuild", "group", grup_id, {"count": count})
    db.commit()
    return count


def resolve_conflict(db: Session, actor_id: int, grup_id: int, conflict_id: int) -> GrupConflicte:
    require_role(db, actor_id, grup_id, "admin")
    conflict = db.query(GrupConflicte).filter(
        GrupConflicte.id == conflict_id,
        GrupConflicte.grup_id == grup_id,
    ).first()
    if not conflict:
        raise NotFoundError("conflict not found")
    if conflict.status != "resolved":
        conflict.status = "resolved"
        conflict.resolved_at = datetime.utcnow()
        conflict.resolved_by = actor_id
    log_change(db, grup_id, actor_id, "conflict_resolved", "conflict", conflict_id)
    db.commit()
    return conflict


# --------------------------------------------------
# VIEWS
# --------------------------------------------------
def user_display_name(u: Optional[User]) -> str:
    if u is None:
        return "-"
    return (u.display_name or "").strip() or (u.email or "").strip() or "-"


def list_groups_for_user(db: Session, user_id: int) -> List[Tuple[Grup, GrupMembre]]:
    rows = db.query(Grup, GrupMembre).join(GrupMembre, GrupMembre.grup_id == Grup.id).filter(
        GrupMembre.user_id == user_id,
        GrupMembre.status != "removed",
    ).order_by(Grup.id).all()
    return [(g, m) for g, m in rows]


def members_view(db: Session, grup_id: int) -> List[Dict]:
    members = db.query(GrupMembre).filter(
        GrupMembre.grup_id == grup_id,
        GrupMembre.status != "removed",
    ).order_by(GrupMembre.user_id).all()
    return [
        {
            "user_id": m.user_id,
            "name": user_display_name(m.user),
            "email": m.user.email if m.user else "",
            "role": m.role,
            "status": m.status,
            "joined_at": m.joined_at,
        }
        for m in members
    ]


def trees_view(db: Session, grup_id: int) -> List[Dict]:
    links = db.query(GrupArbre).filter(GrupArbre.grup_id == grup_id, GrupArbre.status == "active").all()
    out = []
    for link in links:
        if link.arbre is None:
            continue
        owner = db.query(User).filter(User.id == link.arbre.owner_user_id).first()
        out.append({
            "arbre_id": link.arbre_id,
            "name": link.arbre.nom,
            "owner_id": link.arbre.owner_user_id,
            "owner_name": user_display_name(owner),
            "status": link.status,
        })
    return out


def conflicts_view(db: Session, grup_id: int, status: str = "") -> List[GrupConflicte]:
    q = db.query(GrupConflicte).filter(GrupConflicte.grup_id == grup_id)
    if status:
        q = q.filter(GrupConflicte.status == status)
    return q.order_by(GrupConflicte.id).all()


def changes_view(
    db: Session,
    grup_id: int,
    actor_id: Optional[int] = None,
    action: str = "",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = 50,
) -> List[Dict]:
    q = db.query(GrupCanvi).filter(GrupCanvi.grup_id == grup_id)
    if actor_id:
        q = q.filter(GrupCanvi.actor_id == actor_id)
    if action:
        q = q.filter(GrupCanvi.action == action)
    if date_from is not None:
        q = q.filter(GrupCanvi.created_at >= date_from)
    if date_to is not None:
        q = q.filter(GrupCanvi.created_at <= date_to)

    out = []
    for c in q.order_by(GrupCanvi.id.desc()).limit(limit).all():
        actor = db.query(User).filter(User.id == c.actor_id).first() if c.actor_id else None
        out.append({
            "id": c.id,
            "action": c.action,
            "actor_id": c.actor_id,
            "actor_name": user_display_name(actor),
            "object_type": c.object_type or "-",
            "object_id": c.object_id,
            "payload": json.loads(c.payload_json) if c.payload_json else None,
            "created_at": c.created_at,
        })
    return out

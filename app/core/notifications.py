import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.arbre import Arbre
from app.models.grup import Grup
from app.models.grup_membre import GrupMembre
from app.models.notification import Notification
from app.models.notification_pref import NotificationPref

logger = logging.getLogger(__name__)

KIND_MATCHES = "matches_pending"
KIND_GRAMPS_ERROR = "gramps_error"
KIND_GROUP_CONFLICTS = "group_conflicts"

NOTIF_TYPES = ["matches", "gramps", "groups"]
NOTIF_FREQS = ["instant", "daily", "weekly", "off"]

KIND_TO_TYPE = {
    KIND_MATCHES: "matches",
    KIND_GRAMPS_ERROR: "gramps",
    KIND_GROUP_CONFLICTS: "groups",
}


# --------------------------------------------------
# PREFERENCES
# --------------------------------------------------
class Prefs:
    def __init__(self, freq: str = "instant", types: Optional[List[str]] = None, custom: bool = False):
        self.freq = freq
        self.types = list(types) if types is not None else list(NOTIF_TYPES)
        self.custom = custom

    def allows(self, kind: str) -> bool:
        if self.freq == "off":
            return False
        family = KIND_TO_TYPE.get(kind)
        if family and self.custom and family not in self.types:
            return False
        return True

    def as_dict(self) -> Dict:
        return {"freq": self.freq, "types": self.types, "custom_types": self.custom}


def parse_types(raw: Optional[str]) -> List[str]:
    if not raw or not raw.strip():
        return []
    try:
        values = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if str(v).strip()]


def filter_types(raw) -> List[str]:
    out = []
    for value in raw or []:
        key = str(value).strip()
        if key in NOTIF_TYPES and key not in out:
            out.append(key)
    return out


def load_prefs(db: Session, user_id: int) -> Prefs:
    pref = db.query(NotificationPref).filter(NotificationPref.user_id == user_id).first()
    if not pref:
        return Prefs()
    freq = (pref.freq or "").strip() or "instant"
    if pref.types_json is not None:
        return Prefs(freq, parse_types(pref.types_json), custom=True)
    return Prefs(freq)


def save_prefs(db: Session, user_id: int, freq: str, types) -> Prefs:
    freq = (freq or "").strip()
    if freq not in NOTIF_FREQS:
        freq = "instant"
    allowed = filter_types(types)

    pref = db.query(NotificationPref).filter(NotificationPref.user_id == user_id).first()
    if not pref:
        pref = NotificationPref(user_id=user_id)
        db.add(pref)
    pref.freq = freq
    pref.types_json = json.dumps(allowed)
    pref.updated_at = datetime.utcnow()
    db.commit()
    return Prefs(freq, allowed, custom=True)


# --------------------------------------------------
# DEDUPE
# --------------------------------------------------
def window_for(freq: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if freq == "weekly":
        year, week, _ = now.isocalendar()
        return f"{year}-W{week:02d}"
    return now.strftime("%Y-%m-%d")


def dedupe_key(kind: str, object_id: Optional[int], freq: str, now: Optional[datetime] = None) -> str:
    window = window_for(freq, now)
    if object_id and object_id > 0:
        return f"{kind}:{object_id}:{window}"
    return f"{kind}:{window}"


# --------------------------------------------------
# FAN-OUT
# --------------------------------------------------
def notify(
    db: Session,
    user_id: int,
    kind: str,
    *,
    title: str = "",
    body: str = "",
    url: str = "",
    object_type: Optional[str] = None,
    object_id: Optional[int] = None,
    dedupe_object_id: Optional[int] = None,
    tree_id: Optional[int] = None,
    group_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[Notification]:
    """
    Single entry point for every internal event.
    Returns the new row, or None when preferences drop the event or a row
    with the same dedupe key already exists for this window.
    Commits.
    """
    if not user_id:
        return None

    prefs = load_prefs(db, user_id)
    if not prefs.allows(kind):
        return None

    key_object = dedupe_object_id if dedupe_object_id is not None else object_id
    key = dedupe_key(kind, key_object, prefs.freq, now)

    existing = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.dedupe_key == key,
    ).first()
    if existing:
        return None

    row = Notification(
        user_id=user_id,
        kind=kind,
        title=title or None,
        body=body or None,
        url=url or None,
        status="unread",
        object_type=object_type,
        object_id=object_id,
        tree_id=tree_id,
        group_id=group_id,
        dedupe_key=key,
    )
    if now is not None:
        row.created_at = now
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent insert of the same key
        db.rollback()
        return None

    return row


def notify_matches(db: Session, owner_id: int, arbre_id: int, count: int):
    if count <= 0 or not owner_id:
        return None
    tree = db.query(Arbre).filter(Arbre.id == arbre_id).first()
    body = f"{count} new possible matches"
    if tree:
        body = f"{count} new possible matches in {tree.nom}"
    return notify(
        db,
        owner_id,
        KIND_MATCHES,
        title="New matches",
        body=body,
        url="/espai/coincidencies",
        dedupe_object_id=arbre_id,
        tree_id=arbre_id or None,
    )


def notify_gramps_error(db: Session, integracio, message: str):
    if integracio is None or not integracio.owner_user_id:
        return None
    base_url = (integracio.base_url or "").strip()
    body = f"Sync with {base_url} failed"
    if (message or "").strip():
        body = f"Sync with {base_url} failed: {message.strip()}"
    return notify(
        db,
        integracio.owner_user_id,
        KIND_GRAMPS_ERROR,
        title="Gramps sync error",
        body=body,
        url="/espai/integracions",
        object_type="gramps_integration",
        object_id=integracio.id,
        tree_id=integracio.arbre_id or None,
    )


def notify_group_conflicts(db: Session, grup_id: int, created: int) -> int:
    if created <= 0 or not grup_id:
        return 0
    grup = db.query(Grup).filter(Grup.id == grup_id).first()
    members = db.query(GrupMembre).filter(GrupMembre.grup_id == grup_id).all()

    body = f"{created} new possible duplicates"
    if grup:
        body = f"{created} new possible duplicates in {grup.nom}"

    sent = 0
    for m in members:
        if (m.status or "").strip() != "active":
            continue
        row = notify(
            db,
            m.user_id,
            KIND_GROUP_CONFLICTS,
            title="Group conflicts",
            body=body,
            url=f"/espai/grups?group_id={grup_id}&conflict_status=pending",
            dedupe_object_id=grup_id,
            group_id=grup_id,
        )
        if row is not None:
            sent += 1
    return sent


# --------------------------------------------------
# READS
# --------------------------------------------------
def list_notifications(db: Session, user_id: int, status: str = "", limit: int = 50) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if status:
        q = q.filter(Notification.status == status)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(db: Session, user_id: int) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.status == "unread",
    ).count()


def mark_read(db: Session, user_id: int, notification_id: int) -> bool:
    row = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if not row:
        return False
    if row.status != "read":
        row.status = "read"
        row.read_at = datetime.utcnow()
        db.commit()
    return True


def mark_all_read(db: Session, user_id: int) -> int:
    count = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.status == "unread",
    ).update({"status": "read", "read_at": datetime.utcnow()}, synchronize_session=False)
    db.commit()
    return count

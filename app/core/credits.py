"""
Credit ledger and credit-gated media access.

The balance is never stored: it is the sum of the user's ledger deltas.
Viewing a paid item debits the ledger once and hands out a grant token
that stays valid for MEDIA_GRANT_HOURS; until it expires further views
reuse the grant and cost nothing.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import ForbiddenError, InsufficientCreditsError, NotFoundError, ValidationError
from app.models.credit_ledger import CreditLedgerEntry
from app.models.media_access_grant import MediaAccessGrant
from app.models.media_access_log import MediaAccessLog
from app.models.media_item import MediaItem
from app.models.user import User

logger = logging.getLogger(__name__)

REASON_SPEND = "spend_view_item"
REASON_EARN = "earn_from_points"


# --------------------------------------------------
# LEDGER
# --------------------------------------------------
def get_balance(db: Session, user_id: int) -> int:
    total = db.query(func.coalesce(func.sum(CreditLedgerEntry.delta), 0)).filter(
        CreditLedgerEntry.user_id == user_id
    ).scalar()
    return int(total or 0)


def add_entry(db: Session, user_id: int, delta: int, reason: str, ref_type: str | None = None, ref_id: int | None = None):
    entry = CreditLedgerEntry(
        user_id=user_id,
        delta=delta,
        reason=reason,
        ref_type=ref_type,
        ref_id=ref_id,
    )
    db.add(entry)
    return entry


def list_entries(db: Session, user_id: int, limit: int = 50):
    return db.query(CreditLedgerEntry).filter(
        CreditLedgerEntry.user_id == user_id
    ).order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc()).limit(limit).all()


# --------------------------------------------------
# POINTS
# --------------------------------------------------
def points_for_difficulty(difficulty: int) -> int:
    difficulty = max(0, min(100, int(difficulty or 0)))
    return settings.MEDIA_POINTS_BASE + difficulty * settings.MEDIA_POINTS_K


def award_points(db: Session, user_id: int, points: int):
    if points <= 0:
        return
    db.query(User).filter(User.id == user_id).update(
        {User.points_total: User.points_total + points},
        synchronize_session=False,
    )
    db.commit()


def award_indexing_points(db: Session, user_id: int, item: MediaItem) -> int:
    points = points_for_difficulty(item.difficulty)
    award_points(db, user_id, points)
    logger.info("credits: user %s earned %s points indexing item %s", user_id, points, item.id)
    return points


def convert_points(db: Session, user_id: int, points: int) -> int:
    """
    Turns points into credits at MEDIA_POINTS_PER_CREDIT.
    The points debit and the ledger credit commit together.
    """
    rate = settings.MEDIA_POINTS_PER_CREDIT
    if points <= 0 or points < rate:
        raise ValidationError("invalid amount of points", field="points")
    if points % rate != 0:
        raise ValidationError(f"points must be a multiple of {rate}", field="points")
    credits = points // rate

    debited = db.query(User).filter(
        User.id == user_id,
        User.points_total >= points,
    ).update({User.points_total: User.points_total - points}, synchronize_session=False)
    if debited == 0:
        db.rollback()
        raise ValidationError("not enough points", field="points")

    add_entry(db, user_id, credits, REASON_EARN, "points")
    db.commit()
    logger.info("credits: user %s converted %s points into %s credits", user_id, points, credits)
    return credits


# --------------------------------------------------
# MEDIA ACCESS
# --------------------------------------------------
def item_cost(item: MediaItem) -> int:
    if item.credit_cost and item.credit_cost > 0:
        return item.credit_cost
    if item.album is not None and item.album.credit_cost and item.album.credit_cost > 0:
        return item.album.credit_cost
    return 0


def active_grant(db: Session, user_id: int, item_id: int, now: Optional[datetime] = None) -> Optional[MediaAccessGrant]:
    now = now or datetime.utcnow()
    return db.query(MediaAccessGrant).filter(
        MediaAccessGrant.user_id == user_id,
        MediaAccessGrant.media_item_id == item_id,
        MediaAccessGrant.expires_at > now,
    ).order_by(MediaAccessGrant.expires_at.desc()).first()


def generate_grant_token() -> str:
    return secrets.token_urlsafe(32)


def ensure_access_grant(db: Session, user_id: int, item: MediaItem, now: Optional[datetime] = None) -> Tuple[MediaAccessGrant, bool]:
    """
    Returns (grant, created). An unexpired grant is reused without touching
    the ledger. Otherwise the debit, the grant and its access log commit
    together; the user row stays locked from the balance check to the commit.
    """
    now = now or datetime.utcnow()
    existing = active_grant(db, user_id, item.id, now)
    if existing is not None:
        return existing, False

    cost = item_cost(item)
    try:
        if cost > 0:
            db.query(User).filter(User.id == user_id).with_for_update().one()
            if get_balance(db, user_id) < cost:
                db.rollback()
                raise InsufficientCreditsError("not enough credits")
            add_entry(db, user_id, -cost, REASON_SPEND, "media_item", item.id)

        grant = MediaAccessGrant(
            user_id=user_id,
            media_item_id=item.id,
            grant_token=generate_grant_token(),
            expires_at=now + timedelta(hours=settings.MEDIA_GRANT_HOURS),
            credits_spent=cost,
        )
        db.add(grant)
        db.flush()
        db.add(MediaAccessLog(
            user_id=user_id,
            media_item_id=item.id,
            grant_id=grant.id,
            access_type="view",
            credits_spent=cost,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("credits: grant for user %s item %s failed", user_id, item.id)
        raise

    db.refresh(grant)
    logger.info("credits: user %s unlocked item %s for %s credits", user_id, item.id, cost)
    return grant, True


def validate_grant(db: Session, token: str, user_id: int, item_id: int, now: Optional[datetime] = None) -> MediaAccessGrant:
    token = (token or "").strip()
    if not token:
        raise ForbiddenError("missing grant token")
    grant = db.query(MediaAccessGrant).filter(MediaAccessGrant.grant_token == token).first()
    if grant is None or grant.user_id != user_id or grant.media_item_id != item_id:
        raise ForbiddenError("invalid grant token")
    if grant.expires_at <= (now or datetime.utcnow()):
        raise ForbiddenError("grant expired")
    return grant


def get_item(db: Session, public_id: str) -> MediaItem:
    item = db.query(MediaItem).filter(MediaItem.public_id == public_id).first()
    if item is None:
        raise NotFoundError("media item not found")
    return item

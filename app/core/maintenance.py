import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models.maintenance_window import MaintenanceWindow

logger = logging.getLogger(__name__)

SEVERITIES = ("info", "warning", "critical")


def display_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def active_window(db: Session, now: datetime) -> Optional[MaintenanceWindow]:
    """The enabled window that has not ended yet and starts soonest."""
    return db.query(MaintenanceWindow).filter(
        MaintenanceWindow.is_enabled.is_(True),
        MaintenanceWindow.ends_at > now,
    ).order_by(MaintenanceWindow.starts_at, MaintenanceWindow.id).first()


def build_banner(window: Optional[MaintenanceWindow], now: datetime) -> Optional[dict]:
    if window is None:
        return None
    title = (window.title or "").strip()
    message = (window.message or "").strip()
    if not title and not message:
        return None

    severity = (window.severity or "").strip().lower()
    if severity not in SEVERITIES:
        severity = "info"

    cta_label = (window.cta_label or "").strip()
    cta_url = (window.cta_url or "").strip()
    if not cta_label or not cta_url:
        cta_label = cta_url = ""

    return {
        "id": window.id,
        "title": title,
        "message": message,
        "severity": severity,
        "cta_label": cta_label,
        "cta_url": cta_url,
        "dismissible": bool(window.dismissible),
        "state": "scheduled" if now < window.starts_at else "active",
        "starts_at": display_time(window.starts_at),
        "ends_at": display_time(window.ends_at),
    }


class BannerCache:
    """
    Read-through cache of the current banner, refreshed at most once per ttl.
    A None banner is cached too.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._mu = threading.Lock()
        self._banner: Optional[dict] = None
        self._loaded_at: Optional[float] = None

    def _fresh(self, at: float) -> bool:
        ttl = self.ttl_seconds if self.ttl_seconds is not None else settings.MAINTENANCE_CACHE_SECONDS
        return self._loaded_at is not None and at - self._loaded_at < ttl

    def get(self, db: Session, now: Optional[datetime] = None) -> Optional[dict]:
        with self._mu:
            at = self.clock()
            if self._fresh(at):
                return self._banner
            now = now or datetime.utcnow()
            self._banner = build_banner(active_window(db, now), now)
            self._loaded_at = at
            return self._banner

    def invalidate(self):
        with self._mu:
            self._banner = None
            self._loaded_at = None


banner_cache = BannerCache()

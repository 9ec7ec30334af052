from datetime import datetime, timedelta

from app.core.maintenance import BannerCache, active_window, build_banner
from app.models.maintenance_window import MaintenanceWindow


NOW = datetime(2026, 6, 1, 8, 0, 0)


def add_window(db, start, end, **fields):
    values = {"title": "Manteniment", "message": "Tornem aviat", "severity": "warning"}
    values.update(fields)
    window = MaintenanceWindow(starts_at=start, ends_at=end, **values)
    db.add(window)
    db.commit()
    return window


def test_no_window_no_banner(db):
    assert active_window(db, NOW) is None
    assert build_banner(None, NOW) is None


def test_active_and_scheduled_states(db):
    running = add_window(db, NOW - timedelta(hours=1), NOW + timedelta(hours=1))
    banner = build_banner(active_window(db, NOW), NOW)
    assert banner["id"] == running.id
    assert banner["state"] == "active"
    assert banner["starts_at"] == "2026-06-01 07:00"

    later = NOW - timedelta(hours=2)
    assert build_banner(running, later)["state"] == "scheduled"


def test_ended_and_disabled_windows_are_ignored(db):
    add_window(db, NOW - timedelta(days=2), NOW - timedelta(days=1))
    add_window(db, NOW - timedelta(hours=1), NOW + timedelta(hours=1), is_enabled=False)
    upcoming = add_window(db, NOW + timedelta(days=1), NOW + timedelta(days=2))
    assert active_window(db, NOW).id == upcoming.id


def test_banner_normalisation(db):
    window = add_window(
        db, NOW, NOW + timedelta(hours=1),
        severity="Panic", cta_label="Més info", cta_url="  ", dismissible=False,
    )
    banner = build_banner(window, NOW)
    assert banner["severity"] == "info"
    assert (banner["cta_label"], banner["cta_url"]) == ("", "")
    assert banner["dismissible"] is False

    window.title = " "
    window.message = None
    assert build_banner(window, NOW) is None


def test_cache_serves_until_ttl(db):
    ticks = [0.0]
    cache = BannerCache(ttl_seconds=30, clock=lambda: ticks[0])

    assert cache.get(db, NOW) is None
    add_window(db, NOW - timedelta(hours=1), NOW + timedelta(hours=1))

    ticks[0] = 10.0
    assert cache.get(db, NOW) is None  # the empty result is cached too

    ticks[0] = 31.0
    assert cache.get(db, NOW)["title"] == "Manteniment"


def test_invalidate_forces_reload(db):
    cache = BannerCache(ttl_seconds=300, clock=lambda: 0.0)
    assert cache.get(db, NOW) is None
    add_window(db, NOW, NOW + timedelta(hours=1), title="Nova versió")
    cache.invalidate()
    assert cache.get(db, NOW)["title"] == "Nova versió"

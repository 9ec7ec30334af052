from datetime import datetime, timedelta

from app.core.notifications import (
    KIND_GRAMPS_ERROR,
    KIND_GROUP_CONFLICTS,
    KIND_MATCHES,
    dedupe_key,
    list_notifications,
    load_prefs,
    mark_all_read,
    mark_read,
    notify,
    notify_group_conflicts,
    notify_matches,
    save_prefs,
    unread_count,
    window_for,
)
from app.models.grup import Grup
from app.models.grup_membre import GrupMembre
from app.models.notification import Notification


MONDAY = datetime(2026, 3, 2, 9, 0, 0)


def test_windows_and_keys():
    assert window_for("instant", MONDAY) == "2026-03-02"
    assert window_for("daily", MONDAY) == "2026-03-02"
    assert window_for("weekly", MONDAY) == "2026-W10"
    assert dedupe_key(KIND_MATCHES, 4, "daily", MONDAY) == "matches_pending:4:2026-03-02"
    assert dedupe_key(KIND_MATCHES, None, "daily", MONDAY) == "matches_pending:2026-03-02"


def test_same_event_twice_in_a_day_is_collapsed(db, make_user, make_tree):
    owner = make_user()
    tree = make_tree(owner, "Puig")

    first = notify_matches(db, owner.id, tree.id, 3)
    second = notify_matches(db, owner.id, tree.id, 5)

    assert first is not None
    assert first.body == "3 new possible matches in Puig"
    assert second is None
    assert db.query(Notification).count() == 1


def test_next_day_gets_a_new_row(db, make_user):
    user = make_user()
    assert notify(db, user.id, KIND_MATCHES, object_id=1, now=MONDAY) is not None
    assert notify(db, user.id, KIND_MATCHES, object_id=1, now=MONDAY + timedelta(days=1)) is not None
    assert notify(db, user.id, KIND_MATCHES, object_id=2, now=MONDAY) is not None
    assert unread_count(db, user.id) == 3


def test_weekly_frequency_collapses_the_whole_week(db, make_user):
    user = make_user()
    save_prefs(db, user.id, "weekly", ["matches"])
    assert notify(db, user.id, KIND_MATCHES, object_id=1, now=MONDAY) is not None
    assert notify(db, user.id, KIND_MATCHES, object_id=1, now=MONDAY + timedelta(days=3)) is None


def test_preferences_filter_kinds(db, make_user):
    user = make_user()
    assert load_prefs(db, user.id).as_dict() == {
        "freq": "instant",
        "types": ["matches", "gramps", "groups"],
        "custom_types": False,
    }

    prefs = save_prefs(db, user.id, "daily", ["gramps", "bogus", "gramps"])
    assert prefs.types == ["gramps"]
    assert notify(db, user.id, KIND_MATCHES, object_id=1) is None
    assert notify(db, user.id, KIND_GRAMPS_ERROR, object_id=1) is not None

    save_prefs(db, user.id, "off", ["gramps"])
    assert notify(db, user.id, KIND_GRAMPS_ERROR, object_id=2) is None


def test_unknown_frequency_falls_back_to_instant(db, make_user):
    user = make_user()
    assert save_prefs(db, user.id, "hourly", []).freq == "instant"
    assert load_prefs(db, user.id).custom


def test_group_conflicts_reach_active_members_only(db, make_user):
    owner, member, invited = make_user(), make_user(), make_user()
    grup = Grup(nom="Cosins", owner_user_id=owner.id)
    db.add(grup)
    db.commit()
    for user, status in ((owner, "active"), (member, "active"), (invited, "invited")):
        db.add(GrupMembre(grup_id=grup.id, user_id=user.id, role="member", status=status))
    db.commit()

    assert notify_group_conflicts(db, grup.id, 2) == 2
    assert notify_group_conflicts(db, grup.id, 1) == 0
    row = db.query(Notification).filter(Notification.user_id == member.id).one()
    assert row.kind == KIND_GROUP_CONFLICTS
    assert row.body == "2 new possible duplicates in Cosins"


def test_mark_read(db, make_user):
    user, other = make_user(), make_user()
    a = notify(db, user.id, KIND_MATCHES, object_id=1)
    notify(db, user.id, KIND_MATCHES, object_id=2)

    assert not mark_read(db, other.id, a.id)
    assert mark_read(db, user.id, a.id)
    assert [n.status for n in list_notifications(db, user.id, status="read")] == ["read"]
    assert mark_all_read(db, user.id) == 1
    assert unread_count(db, user.id) == 0

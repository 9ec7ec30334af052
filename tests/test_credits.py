import io
from datetime import datetime, timedelta

import pytest
from fastapi import UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query
from starlette.datastructures import Headers

from app.core import credits, media
from app.core.errors import ForbiddenError, InsufficientCreditsError, ValidationError
from app.models.credit_ledger import CreditLedgerEntry
from app.models.media_access_grant import MediaAccessGrant
from app.models.media_access_log import MediaAccessLog
from app.models.media_album import MediaAlbum
from app.models.media_item import MediaItem
from app.models.user import User


NOW = datetime(2026, 5, 1, 10, 0, 0)


def png_upload(name="page.png", data=b"\x89PNG fake", content_type="image/png"):
    return UploadFile(file=io.BytesIO(data), filename=name, headers=Headers({"content-type": content_type}))


@pytest.fixture()
def album(db, make_user):
    return media.create_album(db, make_user(is_admin=True), "Baptismes 1850", credit_cost=3)


def make_item(db, album, credit_cost=0, difficulty=0):
    item = MediaItem(
        public_id=media.new_public_id(),
        album_id=album.id,
        credit_cost=credit_cost,
        difficulty=difficulty,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def fund(db, user, amount):
    credits.add_entry(db, user.id, amount, "grant_admin")
    db.commit()


# ---------------------- access ----------------------

def test_insufficient_balance_changes_nothing(db, make_user, album):
    user = make_user()
    item = make_item(db, album)
    fund(db, user, 2)

    with pytest.raises(InsufficientCreditsError):
        credits.ensure_access_grant(db, user.id, item, NOW)

    assert credits.get_balance(db, user.id) == 2
    assert db.query(MediaAccessGrant).count() == 0


def test_view_debits_once_and_reuses_grant(db, make_user, album):
    user = make_user()
    item = make_item(db, album)
    fund(db, user, 5)

    grant, created = credits.ensure_access_grant(db, user.id, item, NOW)
    assert created
    assert grant.expires_at == NOW + timedelta(hours=24)
    assert grant.credits_spent == 3
    assert credits.get_balance(db, user.id) == 2

    again, created_again = credits.ensure_access_grant(db, user.id, item, NOW + timedelta(hours=1))
    assert (again.id, created_again) == (grant.id, False)
    assert db.query(CreditLedgerEntry).filter(CreditLedgerEntry.user_id == user.id).count() == 2
    assert db.query(MediaAccessLog).count() == 1


def test_expired_grant_charges_again(db, make_user, album):
    user = make_user()
    item = make_item(db, album, credit_cost=1)
    fund(db, user, 5)
    credits.ensure_access_grant(db, user.id, item, NOW)

    _, created = credits.ensure_access_grant(db, user.id, item, NOW + timedelta(hours=25))
    assert created
    assert credits.get_balance(db, user.id) == 3


def test_free_items_never_touch_the_ledger(db, make_user):
    admin = make_user(is_admin=True)
    free_album = media.create_album(db, admin, "Lliure")
    user = make_user()
    item = make_item(db, free_album)

    grant, created = credits.ensure_access_grant(db, user.id, item, NOW)
    assert created and grant.credits_spent == 0
    assert db.query(CreditLedgerEntry).count() == 0


def test_failed_grant_leaves_no_debit(db, make_user, album, monkeypatch):
    user = make_user()
    first, second = make_item(db, album), make_item(db, album)
    fund(db, user, 10)
    taken, _ = credits.ensure_access_grant(db, user.id, first, NOW)

    monkeypatch.setattr(credits, "generate_grant_token", lambda: taken.grant_token)
    with pytest.raises(IntegrityError):
        credits.ensure_access_grant(db, user.id, second, NOW)

    assert credits.get_balance(db, user.id) == 7
    reasons = [e.reason for e in credits.list_entries(db, user.id)]
    assert sorted(reasons) == ["grant_admin", "spend_view_item"]
    assert db.query(MediaAccessGrant).count() == 1
    assert db.query(MediaAccessLog).count() == 1


def test_balance_is_checked_under_the_user_lock(db, make_user, album, monkeypatch):
    user = make_user()
    item = make_item(db, album)
    fund(db, user, 3)
    steps = []

    real_lock = Query.with_for_update
    real_balance = credits.get_balance

    def lock(self, *args, **kwargs):
        steps.append(("lock", self.column_descriptions[0]["entity"]))
        return real_lock(self, *args, **kwargs)

    def balance(db_, user_id):
        steps.append(("balance", user_id))
        return real_balance(db_, user_id)

    monkeypatch.setattr(Query, "with_for_update", lock)
    monkeypatch.setattr(credits, "get_balance", balance)
    credits.ensure_access_grant(db, user.id, item, NOW)

    assert steps == [("lock", User), ("balance", user.id)]
    assert real_balance(db, user.id) == 0


def test_validate_grant(db, make_user, album):
    user, other = make_user(), make_user()
    item = make_item(db, album, credit_cost=1)
    fund(db, user, 1)
    grant, _ = credits.ensure_access_grant(db, user.id, item, NOW)

    assert credits.validate_grant(db, grant.grant_token, user.id, item.id, NOW).id == grant.id
    for token, uid, when in (
        ("", user.id, NOW),
        ("nope", user.id, NOW),
        (grant.grant_token, other.id, NOW),
        (grant.grant_token, user.id, NOW + timedelta(days=2)),
    ):
        with pytest.raises(ForbiddenError):
            credits.validate_grant(db, token, uid, item.id, when)


def test_item_price_overrides_album():
    album = MediaAlbum(credit_cost=4)
    assert credits.item_cost(MediaItem(credit_cost=0, album=album)) == 4
    assert credits.item_cost(MediaItem(credit_cost=2, album=album)) == 2
    assert credits.item_cost(MediaItem(credit_cost=0, album=MediaAlbum(credit_cost=0))) == 0


# ---------------------- points ----------------------

def test_points_reward_and_conversion(db, make_user, album):
    user = make_user(points_total=5)
    item = make_item(db, album, difficulty=150)

    assert credits.points_for_difficulty(-3) == 10
    assert credits.award_indexing_points(db, user.id, item) == 210
    db.refresh(user)
    assert user.points_total == 215

    assert credits.convert_points(db, user.id, 200) == 20
    db.refresh(user)
    assert user.points_total == 15
    assert credits.get_balance(db, user.id) == 20

    for bad in (0, 5, 25):
        with pytest.raises(ValidationError):
            credits.convert_points(db, user.id, bad)
    with pytest.raises(ValidationError):
        credits.convert_points(db, user.id, 100)
    assert credits.get_balance(db, user.id) == 20


# ---------------------- uploads ----------------------

def test_upload_stores_original(db, make_user, album):
    admin = make_user(is_admin=True)
    item = media.upload_item(db, admin, album, png_upload(), titol=" Foli 12 ", difficulty=40)

    assert (item.titol, item.mime_type, item.difficulty) == ("Foli 12", "image/png", 40)
    with open(item.storage_path, "rb") as fh:
        assert fh.read() == b"\x89PNG fake"
    assert credits.item_cost(item) == 3


def test_upload_rules(db, make_user, album):
    stranger = make_user()
    with pytest.raises(ForbiddenError):
        media.upload_item(db, stranger, album, png_upload())
    admin = make_user(is_admin=True)
    with pytest.raises(ValidationError):
        media.upload_item(db, admin, album, png_upload(name="a.pdf", content_type="application/pdf"))
    with pytest.raises(ValidationError):
        media.upload_item(db, admin, album, png_upload(data=b""))
    with pytest.raises(ValidationError):
        media.create_album(db, admin, "  ")

import os

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BACKGROUND_WORKERS_ENABLED"] = "false"
os.environ.setdefault("ESP_GRAMPS_SECRET", "test-gramps-secret")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import requests
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.auth import get_current_user
from app.config import settings
from app.core import gramps_sync
from app.core.maintenance import banner_cache
from app.database import Base, get_db
from app.models.arbre import Arbre
from app.models.user import User


# ---------------------- Database ----------------------

@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------- Process state ----------------------

@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "GEDCOM_ROOT", str(tmp_path / "gedcom"))
    monkeypatch.setattr(settings, "MEDIA_ROOT", str(tmp_path / "media"))
    monkeypatch.setattr(gramps_sync, "sync_store", gramps_sync.GrampsSyncStore())
    banner_cache.invalidate()
    yield
    banner_cache.invalidate()


# ---------------------- Factories ----------------------

@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(email=None, display_name=None, is_admin=False, points_total=0):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            hashed_password="not-a-real-hash",
            display_name=display_name,
            is_admin=is_admin,
            points_total=points_total,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_tree(db):
    def _make(owner, nom="Arbre"):
        tree = Arbre(owner_user_id=owner.id, nom=nom, visibility="private", status="active")
        db.add(tree)
        db.commit()
        db.refresh(tree)
        return tree

    return _make


# ---------------------- HTTP ----------------------

class AuthState:
    def __init__(self):
        self.user = None


@pytest.fixture()
def auth():
    return AuthState()


@pytest.fixture()
def client(session_factory, auth):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_current_user():
        if auth.user is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return auth.user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ---------------------- Gramps Web double ----------------------

class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if self.payload is None:
            raise ValueError("no JSON body")
        return self.payload


class FakeGramps:
    """Stands in for requests.Session; serves a small Gramps Web API."""

    def __init__(self, people=None, families=None, status_code=200, unreachable=False,
                 events=None, places=None, notes=None, details=None):
        self.people = people or []
        self.families = families or []
        self.events = events or {}
        self.places = places or {}
        self.notes = notes or {}
        self.details = details or {}
        self.status_code = status_code
        self.unreachable = unreachable
        self.calls = []

    def get(self, url, timeout=None, headers=None, auth=None):
        self.calls.append({"url": url, "headers": headers or {}, "auth": auth})
        if self.unreachable:
            raise requests.ConnectionError("connection refused")
        if self.status_code != 200:
            return FakeResponse(self.status_code)
        path = url.split("?")[0]
        if path.endswith("/health"):
            return FakeResponse(200, {"status": "ok"})
        tail = path.split("/api/", 1)[-1].strip("/")
        if tail.startswith("v1/"):
            tail = tail[len("v1/"):]
        resource, _, handle = tail.partition("/")
        if handle:
            return self._item(resource, handle)
        if "/people" in path:
            return FakeResponse(200, {"data": self.people})
        if "/families" in path:
            return FakeResponse(200, self.families)
        return FakeResponse(404)

    def _item(self, resource, handle):
        if resource == "people":
            found = self.details.get(handle) or {p.get("handle"): p for p in self.people}.get(handle)
        else:
            found = {"events": self.events, "places": self.places, "notes": self.notes}.get(resource, {}).get(handle)
        if found is None:
            return FakeResponse(404)
        return FakeResponse(200, found)


@pytest.fixture()
def gramps_server():
    return FakeGramps


def person_record(handle, gramps_id, first, surname, gender=None, birth=None):
    person = {
        "handle": handle,
        "gramps_id": gramps_id,
        "primary_name": {"first_name": first, "surname_list": [{"surname": surname}]},
    }
    if gender is not None:
        person["gender"] = gender
    if birth is not None:
        person["birth_date"] = birth
    return person


@pytest.fixture()
def gramps_person():
    return person_record


@pytest.fixture()
def family_payload():
    people = [
        person_record("h1", "I0001", "Joan", "Puig", gender=1, birth={"year": 1850}),
        person_record("h2", "I0002", "Maria", "Ferrer", gender=0),
        person_record("h3", "I0003", "Pere", "Puig", gender=1),
    ]
    families = [
        {"father_handle": "h1", "mother_handle": "h2", "child_ref_list": [{"ref": "h3"}]},
    ]
    return people, families

"""
Shared pytest fixtures.

The environment is pinned before anything under app/ is imported: an
in-memory SQLite database, HS256 token verification with a test secret,
no log file and no maps key.
"""

import os

os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "INFO"
os.environ["LOG_FILE"] = ""
os.environ["AUTH_VERIFY_MODE"] = "hs256"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["LOCATION_STORE"] = "sql"
os.environ["CHANGE_FEED"] = "memory"
os.environ["GOOGLE_MAPS_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from app.api.deps import get_change_feed, get_location_store, get_maps_loader
from app.core.db import build_engine
from app.core.init_db import init_db
from app.main import app
from app.models.production import Production, UserProduction
from app.models.profile import Profile
from app.services.change_feed import MemoryChangeFeed
from app.services.location_store import SqlLocationStore
from app.services.maps import MapsLoader

ALICE = "11111111-1111-1111-1111-111111111111"
BOB = "22222222-2222-2222-2222-222222222222"
CAROL = "33333333-3333-3333-3333-333333333333"

PROD_A = "aaaaaaaa-0000-0000-0000-000000000001"
PROD_B = "bbbbbbbb-0000-0000-0000-000000000002"


def make_token(user_id: str) -> str:
    return jwt.encode({"sub": user_id, "role": "authenticated"}, "test-jwt-secret", algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    """
    Two productions. Alice and Bob are on A, Alice alone on B, Carol on
    neither. Bob has no profile row so his name falls back.
    """
    with session_factory() as db:
        db.add_all([
            Production(id=PROD_A, name="Harbor Shoot", created_by=ALICE),
            Production(id=PROD_B, name="Desert Unit", status="paused", created_by=ALICE),
            UserProduction(user_id=ALICE, production_id=PROD_A, role="admin"),
            UserProduction(user_id=BOB, production_id=PROD_A, role="member"),
            UserProduction(user_id=ALICE, production_id=PROD_B, role="manager"),
            Profile(id=ALICE, full_name="Alice Grip"),
            Profile(id=CAROL, full_name="Carol Gaffer"),
        ])
        db.commit()
    return session_factory


@pytest.fixture
def store(seeded):
    return SqlLocationStore(seeded)


@pytest.fixture
def feed():
    return MemoryChangeFeed()


@pytest.fixture
def client(store, feed):
    app.dependency_overrides[get_location_store] = lambda: store
    app.dependency_overrides[get_change_feed] = lambda: feed
    app.dependency_overrides[get_maps_loader] = lambda: MapsLoader(None)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

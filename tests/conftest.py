import json
import os
import tempfile

import pytest

# Settings are read at import time
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["UPLOAD_ROOT"] = tempfile.mkdtemp(prefix="recipeshare-uploads-")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recipeshare.main import app
from recipeshare.db import Base, get_db
from recipeshare.models import RecipeType, Unit, User
from recipeshare.schemas import IngredientLine, RecipePayload
from recipeshare.services.storage import LocalUploadStorage, get_storage

# --- Test Database Setup ---

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # one in-memory database shared by every session
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return LocalUploadStorage(root=str(tmp_path / "uploads"), public_path="/uploads")


@pytest.fixture
def client(storage):
    """Test client with DB and storage overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()


def _make_user(db_session, username: str, nickname: str, is_admin: bool = False) -> User:
    user = User(username=username, nickname=nickname, email=f"{username}@example.com", is_admin=is_admin)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def user(db_session):
    return _make_user(db_session, "alice", "Alice Baker")


@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "bob", "Bob Griller")


@pytest.fixture
def admin(db_session):
    return _make_user(db_session, "carol", "Carol Admin", is_admin=True)


@pytest.fixture
def units(db_session):
    """Units keyed by abbreviation."""
    rows = [
        Unit(abbreviation="g", name="gram"),
        Unit(abbreviation="tbsp", name="tablespoon"),
        Unit(abbreviation="cup", name="cup"),
        Unit(abbreviation="pc", name="piece"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return {u.abbreviation: u for u in rows}


@pytest.fixture
def recipe_type(db_session):
    rt = RecipeType(description="Dessert")
    db_session.add(rt)
    db_session.commit()
    db_session.refresh(rt)
    return rt


@pytest.fixture
def auth(user):
    return {"X-User-Id": user.id}


@pytest.fixture
def recipe_form(recipe_type, units):
    """Build multipart form fields for a recipe submission."""
    def build(**overrides):
        ingredients = overrides.pop("ingredients", [
            {"name": "Flour", "amount": 200, "unit": "g"},
            {"name": "Sugar", "amount": 2, "unit": "tbsp"},
        ])
        steps = overrides.pop("steps", ["Mix everything", "Bake for 30 minutes"])
        form = {
            "title": "Pancakes",
            "description": "Fluffy pancakes",
            "steps": json.dumps(steps),
            "prep_time": "10",
            "cook_time": "15",
            "servings": "4",
            "difficulty": "easy",
            "is_public": "true",
            "type_id": str(recipe_type.id),
            "ingredients": json.dumps(ingredients),
        }
        form.update({k: str(v) for k, v in overrides.items()})
        return form
    return build


@pytest.fixture
def make_payload(user, recipe_type, units):
    """Build a validated RecipePayload for service-level tests."""
    def build(**overrides):
        data = {
            "user_id": user.id,
            "title": "Pancakes",
            "description": "Fluffy pancakes",
            "steps": ["Mix everything", "Bake for 30 minutes"],
            "prep_time": 10,
            "cook_time": 15,
            "servings": 4,
            "difficulty": "easy",
            "is_public": True,
            "type_id": recipe_type.id,
            "ingredients": [
                IngredientLine(name="Flour", amount=200, unit="g"),
                IngredientLine(name="Sugar", amount=2, unit="tbsp"),
            ],
        }
        data.update(overrides)
        return RecipePayload(**data)
    return build


import fakeredis
import fakeredis.aioredis
from recipeshare.infra import redis_client


@pytest.fixture(autouse=True)
def mock_redis():
    server = fakeredis.FakeServer()
    redis_client._redis_async = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)

    yield redis_client._redis_async

    redis_client._redis_async = None

from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, get_password_hash
from database import create_document, ensure_indexes, get_db
from main import app
from services import AuthService

PASSWORD = "rahasia123"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["petani_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email="budi@petanimaju.id", admin=False):
    auth = AuthService(db)
    user_id = auth.register(email, get_password_hash(PASSWORD), "Budi")["id"]
    if admin:
        auth.grant_role(user_id)
    return user_id


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


def make_product(db, name="Beras Organik", price=10000, stock=10, unit="kg", age_minutes=0):
    created = datetime.now(timezone.utc) - timedelta(minutes=age_minutes)
    return create_document(db, "products", {
        "name": name,
        "description": f"{name} segar",
        "price": price,
        "image_url": None,
        "category": "Sayuran",
        "stock": stock,
        "unit": unit,
        "created_at": created,
    })


@pytest.fixture
def shopper(db):
    user_id = make_user(db)
    return user_id, auth_headers(user_id)


@pytest.fixture
def admin(db):
    user_id = make_user(db, email="petani@petanimaju.id", admin=True)
    return user_id, auth_headers(user_id)

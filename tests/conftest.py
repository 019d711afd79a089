"""
Shared fixtures: an in-memory MongoDB (mongomock) wired into the app.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import uploads
from catalog import CatalogService
from database import ensure_indexes
from main import app

ADMIN_SECRET = "test-admin-secret"


@pytest.fixture
def mongo_db():
    database = mongomock.MongoClient()["catalog_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def catalog(mongo_db):
    return CatalogService(mongo_db)


@pytest.fixture
def client(mongo_db, tmp_path, monkeypatch):
    monkeypatch.setattr(auth, "ADMIN_SECRET", ADMIN_SECRET)
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(tmp_path))
    app.dependency_overrides[auth.get_db] = lambda: mongo_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _bearer(response):
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/users/admin", json={
        "name": "Admin", "email": "admin@example.com", "password": "pw-admin", "secret": ADMIN_SECRET,
    })
    return _bearer(response)


@pytest.fixture
def user_headers(client):
    response = client.post("/api/users", json={
        "name": "Raj Singh", "email": "raj@example.com", "password": "pw-user",
    })
    return _bearer(response)

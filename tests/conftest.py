"""Shared fixtures: a throwaway SQLite database and an app client per test."""

import os
import tempfile
from types import SimpleNamespace

# Settings are read at import time, so the environment is prepared first.
_DB_DIR = tempfile.mkdtemp(prefix="petaprogress-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["SESSION_HEARTBEAT_SECONDS"] = "3600"
os.environ["DEFAULT_WORKING_HOURS"] = "40"

import pytest
from fastapi.testclient import TestClient

from app.db import models
from app.db.session import SessionLocal, engine
from app.main import app

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def fresh_db():
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    yield
    models.Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def register(client, email, full_name=None, password=PASSWORD):
    """Signs up, signs in and loads the profile once so it exists."""
    resp = client.post("/auth/signup", json={"email": email, "password": password, "full_name": full_name})
    assert resp.status_code == 201, resp.text
    resp = client.post("/auth/token", data={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    token = resp.json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}
    profile = client.get("/api/v1/users/me", headers=headers).json()
    return SimpleNamespace(id=profile["id"], email=email, token=token, headers=headers)


def join(client, admin, member):
    """Invites `member` into the admin's organization and accepts."""
    resp = client.post("/api/v1/admin/invitations", json={"email": member.email}, headers=admin.headers)
    assert resp.status_code == 201, resp.text
    request_id = resp.json()["request"]["id"]
    resp = client.post(f"/api/v1/users/me/invitations/{request_id}/approve", headers=member.headers)
    assert resp.status_code == 200, resp.text


@pytest.fixture
def team(client):
    """One admin with an organization and one department, plus two joined users."""
    admin = register(client, "admin@example.com", "Ada Admin")
    org = client.post("/api/v1/organizations", json={"name": "Acme"}, headers=admin.headers).json()
    department = client.post("/api/v1/departments", json={"name": "Engineering"}, headers=admin.headers).json()
    alice = register(client, "alice@example.com", "Alice")
    bob = register(client, "bob@example.com", "Bob")
    join(client, admin, alice)
    join(client, admin, bob)
    return SimpleNamespace(admin=admin, alice=alice, bob=bob, org=org, department=department)


@pytest.fixture
def make_user(client):
    def _make(email, full_name=None):
        return register(client, email, full_name)
    return _make

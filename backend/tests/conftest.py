import os
import tempfile
import uuid
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="trial-expenses-tests-"))
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_ROOT / 'test.db'}")
os.environ.setdefault("RECEIPTS_DIR", str(_TEST_ROOT / "receipts"))
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")

import pytest
from fastapi.testclient import TestClient

from app.db.session import SessionLocal
from app.main import app


@pytest.fixture(scope="session")
def admin_credentials():
    email = os.getenv("ADMIN_EMAIL", "admin@example.com")
    password = os.getenv("ADMIN_PASSWORD", "ChangeMe123!")
    return email, password


@pytest.fixture(scope="session")
def api_client():
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="session")
def auth_headers(api_client, admin_credentials):
    email, password = admin_credentials
    response = api_client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    token = response.json().get("access_token")
    assert token, "Missing access_token in login response"
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def db_session(api_client):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture()
def user_factory(api_client, auth_headers):
    """Create a user with the given role and return (user_id, headers)."""

    def _create(role: str = "operator"):
        email = f"{role}-{uuid.uuid4().hex[:8]}@example.com"
        password = "ChangeMe12345!"
        res = api_client.post(
            "/users",
            json={"email": email, "full_name": f"{role.title()} Test", "role": role, "temp_password": password},
            headers=auth_headers,
        )
        assert res.status_code == 201, res.text
        login = api_client.post("/auth/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        token = login.json()["access_token"]
        return res.json()["id"], {"Authorization": f"Bearer {token}"}

    return _create


@pytest.fixture()
def patient_factory(api_client, auth_headers):
    def _create(**overrides):
        payload = {
            "code": f"P-{uuid.uuid4().hex[:8]}",
            "first_name": "Ana",
            "first_surname": "Rojas",
        }
        payload.update(overrides)
        res = api_client.post("/patients", json=payload, headers=auth_headers)
        assert res.status_code == 201, res.text
        return res.json()

    return _create


@pytest.fixture()
def trial_factory(api_client, auth_headers):
    """Create a trial with visit types given as (name, order_number) pairs."""

    def _create(visits=(("Screening", 1), ("Visit 1", 2), ("Visit 2", 3)), **overrides):
        payload = {"name": f"MK-{uuid.uuid4().hex[:6]}", "sponsor": "Acme Pharma"}
        payload.update(overrides)
        res = api_client.post("/trials", json=payload, headers=auth_headers)
        assert res.status_code == 201, res.text
        trial = res.json()
        for name, order_number in visits:
            visit_res = api_client.post(
                f"/trials/{trial['id']}/visit-types",
                json={"name": name, "order_number": order_number},
                headers=auth_headers,
            )
            assert visit_res.status_code == 201, visit_res.text
        return trial

    return _create

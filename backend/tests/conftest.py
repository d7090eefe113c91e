import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ["APP_ENV"] = "dev"
os.environ["REDIS_URL"] = ""
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["METRICS_ENABLED"] = "true"
os.environ["METRICS_TOKEN"] = "test-metrics-token"
os.environ["PASSWORD_HASH_SCHEME"] = "bcrypt"
os.environ["PASSWORD_HASH_BCRYPT_COST"] = "4"

import pytest
from fastapi.testclient import TestClient

from app.domain.users.schemas import SessionUser, UserRole
from app.infra.auth import password_hasher_from_settings
from app.infra.kv import InMemoryKeyValueStore
from app.infra.metrics import metrics
from app.infra.storage import InMemoryStorageBackend
from app.main import app
from app.services import AppServices
from app.settings import settings

PASSWORDS = {
    "commander": "commander-dev",
    "staff": "staff-dev",
    "manager": "manager-dev",
    "a0001": "1234",
    "a0002": "1234",
    "a0003": "1234",
}


@pytest.fixture()
def store():
    return InMemoryKeyValueStore()


@pytest.fixture()
def storage():
    return InMemoryStorageBackend()


@pytest.fixture(autouse=True)
def app_services(store, storage):
    original_services = getattr(app.state, "services", None)
    original_settings = getattr(app.state, "app_settings", None)
    services = AppServices(
        kv=store,
        storage=storage,
        password_hasher=password_hasher_from_settings(settings),
        metrics=metrics,
    )
    app.state.services = services
    app.state.app_settings = settings
    yield services
    app.state.services = original_services
    app.state.app_settings = original_settings


@pytest.fixture()
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def client_no_raise():
    """Test client that returns HTTP responses instead of raising server exceptions."""
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture()
def login(client):
    def _login(username: str, password: str | None = None):
        response = client.post(
            "/v1/auth/login",
            json={"username": username, "password": password or PASSWORDS[username]},
        )
        assert response.status_code == 200, response.text
        return response

    return _login


@pytest.fixture()
def commander_user() -> SessionUser:
    return SessionUser(username="commander", role=UserRole.COMMANDER, name="커멘더")


@pytest.fixture()
def staff_user() -> SessionUser:
    return SessionUser(username="staff", role=UserRole.STAFF, name="직원")


@pytest.fixture()
def branch_user() -> SessionUser:
    return SessionUser(
        username="a0001", role=UserRole.BRANCH, name="울산 성능장", branch_name="울산"
    )


@pytest.fixture()
def other_branch_user() -> SessionUser:
    return SessionUser(username="a0002", role=UserRole.BRANCH, name="kc 성능장", branch_name="kc")

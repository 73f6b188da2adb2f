import base64

import pytest
from starlette.testclient import TestClient

from core.config import Settings
from fake_store import FakeStore
from main import app

TEST_USERNAME = "testuser"
TEST_PASSWORD = "testpass"


def basic_auth(username: str, password: str) -> dict:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def settings():
    return Settings(
        mongodb_url="mongodb://localhost:27017/?replicaSet=rs0",
        db_name="testdb",
        auth_username=TEST_USERNAME,
        auth_password=TEST_PASSWORD,
        request_timeout=5.0,
    )


@pytest.fixture
def store():
    """Fresh in-memory database for each test"""
    return FakeStore()


@pytest.fixture
def configured_app(settings, store):
    app.state.settings = settings
    app.state.store = store
    yield app
    app.state.store = None


@pytest.fixture
def client(configured_app):
    """Test client sending valid credentials"""
    with TestClient(configured_app, headers=basic_auth(TEST_USERNAME, TEST_PASSWORD)) as test_client:
        yield test_client


@pytest.fixture
def anon_client(configured_app):
    """Test client without credentials"""
    with TestClient(configured_app) as test_client:
        yield test_client

"""Common test fixtures for the tagnotes service."""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tagnotes.config import config
from tagnotes.models.db_models import init_db
from tagnotes.observability import metrics
from tagnotes.server.api import create_app
from tagnotes.services import auth_gateway
from tagnotes.services.auth_gateway import AuthGateway
from tagnotes.services.note_service import NoteService
from tagnotes.storage.blob_store import BlobStore
from tagnotes.storage.note_store import NoteAggregateStore
from tagnotes.storage.user_repository import UserRepository

TEST_UPLOAD_LIMIT = 4096
TEST_JWT_SECRET = "test-secret-with-enough-length-for-hs256"


@pytest.fixture
def temp_dirs():
    """Create temporary directories for blobs and database."""
    with tempfile.TemporaryDirectory() as blob_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(blob_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    blob_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "database_url", None)
    monkeypatch.setattr(config, "database_path", db_dir / "test_tagnotes.db")
    monkeypatch.setattr(config, "blob_dir", blob_dir)
    monkeypatch.setattr(config, "max_upload_bytes", TEST_UPLOAD_LIMIT)
    monkeypatch.setattr(config, "attachment_base_url", "/uploads")
    monkeypatch.setattr(config, "page_size", 20)
    monkeypatch.setattr(config, "max_page_size", 100)
    # Cheap hashes keep the auth tests fast
    monkeypatch.setattr(auth_gateway, "BCRYPT_ROUNDS", 4)
    metrics.reset()
    yield config
    metrics.reset()


@pytest.fixture
def engine(test_config):
    """Shared engine over a fresh SQLite file."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def user_repository(engine):
    return UserRepository(engine=engine)


@pytest.fixture
def make_user(user_repository):
    """Factory that inserts a user and returns its id."""
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        username = name or f"user{counter['n']}"
        user = user_repository.create_user(
            username, f"{username}@example.com", "not-a-real-hash"
        )
        return user.id

    return _make


@pytest.fixture
def user_id(make_user):
    return make_user("alice")


@pytest.fixture
def other_user_id(make_user):
    return make_user("mallory")


@pytest.fixture
def note_store(engine):
    """Create a test note aggregate store."""
    return NoteAggregateStore(engine=engine)


@pytest.fixture
def blob_store(test_config):
    """Create a test blob store rooted in the temp blob directory."""
    return BlobStore()


@pytest.fixture
def note_service(note_store, blob_store):
    """Create a test NoteService."""
    return NoteService(store=note_store, blobs=blob_store)


@pytest.fixture
def auth(user_repository):
    return AuthGateway(user_repository, secret=TEST_JWT_SECRET)


@pytest.fixture
def client(note_service, auth):
    """HTTP client against an app wired to the test stores."""
    app = create_app(service=note_service, auth=auth, api_prefix="/api")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client):
    """Register a user through the API and return its bearer header."""
    response = client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "alice@example.com", "password": "s3cret"},
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}

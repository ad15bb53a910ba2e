"""
Shared fixtures: an in-memory SQLite database behind the real repository,
scripted gateways, and an app client wired to both.
"""
import pytest
from fastapi.testclient import TestClient

from fakes import KeywordEmbedder, ScriptedCompletion
from pkc.config import Settings
from pkc.db import create_db_engine, create_session_factory
from pkc.db.repository import Repository
from pkc.dependencies import build_services, get_services
from pkc.embedding import HashEmbedder
from pkc.main import app
from pkc.models import EMBEDDING_DIM, Base
from pkc.services.ingestion_service import IngestionCoordinator
from pkc.storage import LocalBlobStorage

VOCABULARY = ["invoice", "acme", "total", "paris", "recipe", "pasta", "meeting", "budget"]


@pytest.fixture
def db_engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def repository(session_factory):
    return Repository(session_factory)


@pytest.fixture
def blob_root(tmp_path):
    return str(tmp_path / "blobs")


@pytest.fixture
def storage(blob_root):
    return LocalBlobStorage(blob_root)


@pytest.fixture
def completion():
    return ScriptedCompletion()


@pytest.fixture
def hash_embedder():
    return HashEmbedder(EMBEDDING_DIM)


@pytest.fixture
def keyword_embedder():
    return KeywordEmbedder(VOCABULARY)


@pytest.fixture
def ingestion(repository, storage, hash_embedder):
    return IngestionCoordinator(repository, storage, hash_embedder, chunk_size=2000, batch_size=100)


@pytest.fixture
def settings(blob_root):
    return Settings(storage_root=blob_root)


@pytest.fixture
def services(settings, session_factory, completion, hash_embedder, storage):
    return build_services(
        settings,
        session_factory,
        completion=completion,
        embedder=hash_embedder,
        storage=storage,
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


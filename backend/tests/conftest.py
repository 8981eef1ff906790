import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.database import get_db, get_engine, init_db, locking_engine
from app.dependencies import get_allocator, get_pruner
from app.main import app
from app.services.codegen_service import CodeAllocator
from app.services.prune_service import Pruner


@pytest.fixture
def test_settings(tmp_path):
    return Settings(data_dir=tmp_path, ip_hash_secret="test-secret")


@pytest.fixture
def test_engine(tmp_path):
    engine = get_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_db(test_engine):
    TestSession = sessionmaker(bind=test_engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestSession
    app.dependency_overrides.clear()


@pytest.fixture
def allocation_sessions(test_engine):
    return sessionmaker(bind=locking_engine(test_engine), autoflush=False, autocommit=False)


@pytest.fixture
def allocator(allocation_sessions, test_settings):
    return CodeAllocator(session_factory=allocation_sessions, config=test_settings)


@pytest.fixture
def test_pruner(test_db, allocator, test_settings):
    return Pruner(session_factory=test_db, allocator=allocator, config=test_settings)


@pytest.fixture
def client(test_db, allocator, test_pruner):
    app.dependency_overrides[get_allocator] = lambda: allocator
    app.dependency_overrides[get_pruner] = lambda: test_pruner
    c = TestClient(app)
    yield c

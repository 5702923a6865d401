import os
# Override DATABASE_URL before any app imports to avoid PostgreSQL driver requirement
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
# Keep external integrations disabled by default for unit/API tests. Individual
# tests can opt-in by monkeypatching settings.
os.environ["MVP_DISABLE_STRIPE"] = "true"
os.environ["MVP_DISABLE_CELERY"] = "true"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
# Retries still happen, they just do not sleep.
os.environ["RETRY_INITIAL_DELAY_SECONDS"] = "0"
os.environ["AWS_ACCESS_KEY_ID"] = ""
os.environ["AWS_SECRET_ACCESS_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from atelier.platform.database import Base, get_db
from atelier.main import app
from atelier.platform.middleware import _rate_limit_store
from atelier.components.generations.dispatch import get_dispatcher
from atelier.services.storage_service import get_storage
from tests.factories import FakeStorage

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
# Concurrency tests write from several threads; wait on the file lock instead of failing.
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Enable foreign key support for SQLite
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def session_factory(db):
    """Independent sessions on the test database, for tests that use threads."""
    return TestingSessionLocal

@pytest.fixture(scope="function")
def fake_storage():
    return FakeStorage()

@pytest.fixture(scope="function")
def dispatched():
    """Generation ids handed to the dispatcher during a request."""
    return []

@pytest.fixture(scope="function")
def client(db, fake_storage, dispatched):
    def record_dispatch(generation_id, background_tasks=None):
        dispatched.append(generation_id)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: fake_storage
    app.dependency_overrides[get_dispatcher] = lambda: record_dispatch
    Base.metadata.create_all(bind=engine)
    # Clear in-memory rate limit state between tests to prevent 429 bleed-through
    _rate_limit_store.clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    _rate_limit_store.clear()
    Base.metadata.drop_all(bind=engine)

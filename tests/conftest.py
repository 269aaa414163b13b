# tests/conftest.py
"""
Pytest configuration and fixtures for tradesync tests.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import create_app
from tradesync.core.authenticator import Authenticator
from tradesync.core.credentials import CredentialStore
from tradesync.core.dashboard import DashboardService
from tradesync.core.ingestion import TradeIngestionService
from tradesync.core.session_token import SessionTokenCodec
from tradesync.config import settings
from tradesync.database.engine import build_engine, get_session
from tradesync.database.models import Base
from tradesync.database.repo import Repo

# Test database URL (in-memory SQLite for fast tests)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across sessions via StaticPool."""
    eng = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repo(db_session):
    return Repo(db_session)


@pytest.fixture
def codec():
    return SessionTokenCodec(settings.TOKEN_SECRET, max_age_sec=settings.TOKEN_MAX_AGE_SEC)


@pytest.fixture
def credential_store(repo):
    return CredentialStore(repo, settings.CREDENTIAL_PEPPER, password_length=settings.CREDENTIAL_PASSWORD_LENGTH)


@pytest.fixture
def dashboard(repo, credential_store):
    return DashboardService(repo, credential_store)


@pytest.fixture
def authenticator(repo, credential_store, codec):
    return Authenticator(repo, credential_store, codec, default_terminal=settings.DEFAULT_TERMINAL_NAME)


@pytest.fixture
def ingestion(repo, codec):
    return TradeIngestionService(repo, codec, default_lots=settings.DEFAULT_LOTS)


@pytest.fixture
def registered_user(dashboard, db_session):
    """A signed-up user holding freshly issued terminal credentials."""
    res = dashboard.ensure_user(user_id="a1b2c3d4e5f6a7b8c9d0", email="trader@example.com")
    db_session.commit()
    return res


@pytest.fixture
def client(session_factory):
    """Create test client; every request gets its own session on the test database."""
    app = create_app(init_db=False)

    def override_get_session():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_session] = override_get_session
    return TestClient(app)

"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timezone

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32chars")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_CLEANUP_INTERVAL_MINUTES", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import FrozenClock
from app.core.config import settings
from app.core.database import Base, get_db
from app.core.security import PasswordHasher, TotpVerifier
from app.api.deps import get_clock
from app.models import User
from app.services.auth_service import AuthService
from app.services.jti_registry import SqlJtiRegistry
from app.services.rate_limit_service import RateLimitService, SqlRateLimitStore
from app.services.token_service import TokenService
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture
def clock():
    """A frozen clock at a fixed, whole-second instant."""
    return FrozenClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def jti_registry(db_session):
    return SqlJtiRegistry(db_session)


@pytest.fixture
def token_service(clock, jti_registry):
    return TokenService.from_settings(settings, clock, jti_registry)


@pytest.fixture
def rate_limit_service(db_session, clock):
    return RateLimitService(
        SqlRateLimitStore(db_session),
        clock,
        username_threshold=10,
        ip_threshold=100,
        window_minutes=10,
    )


@pytest.fixture
def password_hasher():
    return PasswordHasher(min_length=12)


@pytest.fixture
def auth_service(db_session, clock, token_service, rate_limit_service, password_hasher):
    return AuthService(
        db_session,
        token_service,
        rate_limit_service,
        password_hasher,
        TotpVerifier(clock),
    )


@pytest.fixture
def test_user(auth_service) -> User:
    return auth_service.create_user("alice@example.com", TEST_PASSWORD)


@pytest.fixture
def test_user_credentials():
    """Login body for test_user."""
    return {
        "email": "alice@example.com",
        "password": TEST_PASSWORD,
    }


@pytest.fixture(scope="function")
def client(db_session, clock):
    """Create a test client with database and clock overrides."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import altcha_server.main as main_module
from altcha_server.database import Base, get_db
from altcha_server.main import app
from altcha_server.middleware.rate_limit import limiter
from altcha_server.services.challenge_service import ChallengeOptions
from altcha_server.services.challenge_store import ChallengeStore
from altcha_server.services.hasher import Algorithm
from altcha_server.services.session_store import InMemorySessionStore


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """Create a test client with the test database and disabled rate limiting."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Disable rate limiting for tests
    limiter.enabled = False

    # Point check_database_tables() at the test database
    original_engine = main_module.engine
    main_module.engine = db_session.get_bind()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True
    main_module.engine = original_engine


@pytest.fixture
def store():
    """Challenge store over a fresh in-memory session."""
    return ChallengeStore(InMemorySessionStore())


@pytest.fixture
def fast_options():
    """Small search space so tests can brute-force solutions quickly."""
    return ChallengeOptions(algorithm=Algorithm.SHA256, max_number=1000)

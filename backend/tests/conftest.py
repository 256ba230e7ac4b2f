"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.helpers import get_consent_manager, get_orchestrator, get_registry
from database import Base, get_db
from main import app
from services.account_sync_orchestrator import AccountSyncOrchestrator
from services.consent_manager import ConsentManager
from services.institution_registry import InstitutionRegistry
from services.transaction_ingestion import TransactionIngestionMapper
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_REDIRECT_URI,
    cipher,
    connected_account,
    consent,
    institution,
    pending_consent,
)
from tests.fixtures.mocks import (
    FakeClock,
    MockExternalApiClient,
    MockInstitutionDirectory,
    MockOAuthClient,
    RecordingSleep,
    SAMPLE_REMOTE_ACCOUNTS,
    SAMPLE_REMOTE_TRANSACTIONS,
)


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine shared by every session in a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="sleep")
def sleep_fixture():
    return RecordingSleep()


@pytest.fixture(name="mock_api_client")
def mock_api_client_fixture():
    """Account API mock with sample transactions and accounts."""
    return MockExternalApiClient(
        transactions=SAMPLE_REMOTE_TRANSACTIONS,
        accounts=SAMPLE_REMOTE_ACCOUNTS,
    )


@pytest.fixture(name="mock_oauth_client")
def mock_oauth_client_fixture():
    return MockOAuthClient()


@pytest.fixture(name="mock_directory")
def mock_directory_fixture():
    return MockInstitutionDirectory()


@pytest.fixture(name="registry")
def registry_fixture(mock_directory, clock):
    return InstitutionRegistry(directory=mock_directory, clock=clock)


@pytest.fixture(name="consent_manager")
def consent_manager_fixture(mock_oauth_client, cipher, registry, clock):
    return ConsentManager(
        oauth_client=mock_oauth_client,
        cipher=cipher,
        registry=registry,
        clock=clock,
        client_id=TEST_CLIENT_ID,
        client_secret=TEST_CLIENT_SECRET,
        redirect_uri=TEST_REDIRECT_URI,
        refresh_before_minutes=5,
    )


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(mock_api_client, consent_manager, clock, sleep):
    return AccountSyncOrchestrator(
        api_client=mock_api_client,
        consent_manager=consent_manager,
        mapper=TransactionIngestionMapper(clock=clock),
        clock=clock,
        sleep=sleep,
        max_retry_attempts=3,
        retry_delay_ms=5000,
        balance_interval_minutes=15,
        transaction_interval_hours=24,
        lookback_days=30,
    )


@pytest.fixture(name="client")
def client_fixture(db, registry, consent_manager, orchestrator):
    """Create a test client with the test database and mocked collaborators."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_consent_manager] = lambda: consent_manager
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()

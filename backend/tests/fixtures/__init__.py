"""Test fixtures and sample data."""
import pytest
from datetime import datetime, timedelta

from models import ConnectedAccount, Consent, ConsentStatus, Institution, SyncStatus
from services.token_cipher import TokenCipher
from sqlalchemy.orm import Session

from tests.fixtures.mocks import NOW

TEST_ENCRYPTION_KEY = "test-token-encryption-key"
TEST_CLIENT_ID = "test-client-id"
TEST_CLIENT_SECRET = "test-client-secret"
TEST_REDIRECT_URI = "https://app.example/api/open-finance/consents/callback"
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def create_institution(
    db: Session,
    code: str = "BANKA",
    name: str = "Bank A",
    certificate_required: bool = False,
    is_active: bool = True,
) -> Institution:
    """Create an institution with example.com endpoints derived from its code."""
    host = code.lower()
    inst = Institution(
        code=code,
        name=name,
        api_base_url=f"https://api.{host}.example",
        authorization_url=f"https://auth.{host}.example/authorize",
        token_url=f"https://auth.{host}.example/token",
        certificate_required=certificate_required,
        is_active=is_active,
        last_refreshed_at=NOW,
    )
    db.add(inst)
    db.commit()
    db.refresh(inst)
    return inst


def create_consent(
    db: Session,
    institution: Institution,
    user_id: str = USER_ID,
    status: ConsentStatus = ConsentStatus.AUTHORIZED,
    expires_at: datetime | None = NOW + timedelta(hours=1),
    access_token: str | None = "stored-access-token",
    refresh_token: str | None = "stored-refresh-token",
    cipher: TokenCipher | None = None,
) -> Consent:
    """Create a consent with its tokens encrypted under the test key."""
    cipher = cipher or TokenCipher(TEST_ENCRYPTION_KEY)
    consent = Consent(
        user_id=user_id,
        institution_id=institution.id,
        status=status.value,
        scopes="accounts,transactions",
        access_token=cipher.encrypt(access_token),
        refresh_token=cipher.encrypt(refresh_token),
        expires_at=expires_at,
        state_token="state-123" if status == ConsentStatus.PENDING else None,
    )
    db.add(consent)
    db.commit()
    db.refresh(consent)
    return consent


def create_account(
    db: Session,
    consent: Consent,
    external_account_id: str = "ext-acc-1",
    account_type: str = "CHECKING",
    sync_status: SyncStatus = SyncStatus.PENDING,
    last_synced_at: datetime | None = None,
    transactions_synced_at: datetime | None = None,
) -> ConnectedAccount:
    account = ConnectedAccount(
        user_id=consent.user_id,
        consent_id=consent.id,
        institution_id=consent.institution_id,
        external_account_id=external_account_id,
        account_type=account_type,
        account_number="12345-6",
        branch="0001",
        currency="BRL",
        sync_status=sync_status.value,
        last_synced_at=last_synced_at,
        transactions_synced_at=transactions_synced_at,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def cipher() -> TokenCipher:
    """Token cipher keyed with the test encryption key."""
    return TokenCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def institution(db: Session) -> Institution:
    """Create a test institution that does not require mutual TLS."""
    return create_institution(db)


@pytest.fixture
def consent(db: Session, institution: Institution, cipher: TokenCipher) -> Consent:
    """Create an AUTHORIZED consent expiring one hour after NOW."""
    return create_consent(db, institution, cipher=cipher)


@pytest.fixture
def pending_consent(db: Session, institution: Institution, cipher: TokenCipher) -> Consent:
    """Create a PENDING consent awaiting its callback."""
    return create_consent(
        db,
        institution,
        status=ConsentStatus.PENDING,
        expires_at=None,
        access_token=None,
        refresh_token=None,
        cipher=cipher,
    )


@pytest.fixture
def connected_account(db: Session, consent: Consent) -> ConnectedAccount:
    """Create a never-synced CHECKING account under the consent."""
    return create_account(db, consent)

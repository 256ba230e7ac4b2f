"""ConnectedAccount model - a remote bank account linked under a consent."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint

from database import Base
from models.consent import Consent
from models.enums import SyncStatus
from models.utils import generate_uuid, utc_now


class ConnectedAccount(Base):
    """A bank account fetched from an institution under a user's consent.

    The combination of institution_id + external_account_id uniquely
    identifies an account. ``sync_status`` is written only by the sync
    orchestrator; unrecoverable accounts are DISABLED, never deleted.
    """

    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint(
            "institution_id", "external_account_id",
            name="uix_connected_account_institution_external_id",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    consent_id = Column(
        String(36), ForeignKey("open_finance_consents.id"), nullable=False, index=True
    )
    institution_id = Column(
        String(36), ForeignKey("open_finance_institutions.id"), nullable=False, index=True
    )
    external_account_id = Column(String(255), nullable=False)
    account_type = Column(String(50), nullable=False)  # CHECKING, SAVINGS, CREDIT_CARD, ...
    account_number = Column(String(100), nullable=True)
    branch = Column(String(50), nullable=True)
    account_holder_name = Column(String(255), nullable=True)
    balance = Column(Numeric(19, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="BRL")

    # Sync tracking
    sync_status = Column(
        String(50), nullable=False, default=SyncStatus.PENDING.value, index=True
    )
    sync_started_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True, index=True)
    transactions_synced_at = Column(DateTime, nullable=True)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def is_syncable(self, consent: Consent | None, now: datetime | None = None) -> bool:
        """True when the account is not DISABLED and its owning consent is active.

        The consent is passed in explicitly; callers look it up by
        ``consent_id``.
        """
        if self.sync_status == SyncStatus.DISABLED.value:
            return False
        if consent is None or consent.id != self.consent_id:
            return False
        return consent.is_active(now)

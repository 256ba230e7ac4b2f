"""Consent model - an OAuth authorization granted by a user to an institution."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from database import Base
from models.enums import ConsentStatus
from models.utils import as_naive_utc, generate_uuid, utc_now


class Consent(Base):
    """An OAuth consent for one (user, institution) pair.

    Tokens are stored Fernet-encrypted. Consents are never deleted; revoked,
    expired and failed rows stay behind as the audit trail.
    """

    __tablename__ = "open_finance_consents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    institution_id = Column(
        String(36), ForeignKey("open_finance_institutions.id"), nullable=False, index=True
    )
    status = Column(String(50), nullable=False, default=ConsentStatus.PENDING.value, index=True)
    scopes = Column(Text, nullable=False)  # Comma-separated OAuth scopes
    state_token = Column(String(64), nullable=True)  # CSRF state sent with the redirect
    access_token = Column(Text, nullable=True)  # Encrypted
    refresh_token = Column(Text, nullable=True)  # Encrypted
    expires_at = Column(DateTime, nullable=True, index=True)
    revoked_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    @property
    def scope_list(self) -> list[str]:
        return [s for s in (self.scopes or "").split(",") if s]

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once the wall clock reaches expires_at, whatever the stored status."""
        if self.expires_at is None:
            return False
        now = as_naive_utc(now) if now is not None else utc_now()
        return as_naive_utc(self.expires_at) <= now

    def is_active(self, now: datetime | None = None) -> bool:
        return (
            self.status == ConsentStatus.AUTHORIZED.value
            and not self.is_expired(now)
            and self.revoked_at is None
        )

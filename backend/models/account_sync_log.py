"""AccountSyncLog model - append-only record of each sync attempt."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, event

from database import Base
from models.utils import generate_uuid, utc_now


class AccountSyncLog(Base):
    """One row per logical sync attempt on a connected account.

    Written once when the attempt finishes (including all internal
    retries) and never updated afterwards.
    """

    __tablename__ = "account_sync_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("connected_accounts.id"), nullable=False, index=True
    )
    sync_type = Column(String(50), nullable=False, index=True)  # BALANCE | TRANSACTIONS | FULL
    status = Column(String(50), nullable=False, index=True)  # SUCCESS | FAILED | PARTIAL
    records_imported = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    synced_at = Column(DateTime, nullable=False, default=utc_now, index=True)


@event.listens_for(AccountSyncLog, "before_update")
def _reject_sync_log_update(mapper, connection, target):
    raise ValueError("AccountSyncLog entries are immutable")

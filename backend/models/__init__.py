"""SQLAlchemy ORM models."""

from .account_sync_log import AccountSyncLog
from .connected_account import ConnectedAccount
from .consent import Consent
from .enums import (
    ConsentStatus,
    SyncOutcome,
    SyncStatus,
    SyncType,
    TransactionSource,
    TransactionSubtype,
    TransactionType,
)
from .institution import Institution
from .transaction import Transaction, TransactionCategory, TransactionSourceEntity
from .utils import generate_uuid

__all__ = ["AccountSyncLog", "ConnectedAccount", "Consent", "ConsentStatus", "Institution", "SyncOutcome", "SyncStatus", "SyncType", "Transaction", "TransactionCategory", "TransactionSource", "TransactionSourceEntity", "TransactionSubtype", "TransactionType", "generate_uuid"]

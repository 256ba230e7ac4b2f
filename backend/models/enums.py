"""Status and classification vocabularies stored as plain strings."""

from enum import Enum


class ConsentStatus(str, Enum):
    """Lifecycle of an OAuth consent."""

    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class SyncStatus(str, Enum):
    """Per-account sync state machine."""

    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DISABLED = "DISABLED"


class SyncType(str, Enum):
    """What a single sync operation fetches."""

    BALANCE = "BALANCE"
    TRANSACTIONS = "TRANSACTIONS"
    FULL = "FULL"

    @property
    def includes_balance(self) -> bool:
        return self in (SyncType.BALANCE, SyncType.FULL)

    @property
    def includes_transactions(self) -> bool:
        return self in (SyncType.TRANSACTIONS, SyncType.FULL)


class SyncOutcome(str, Enum):
    """Result recorded on an AccountSyncLog entry."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionSubtype(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"


class TransactionSource(str, Enum):
    """Where an ingested transaction originated, derived from account type."""

    BANK_TRANSACTION = "BANK_TRANSACTION"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    OTHER = "OTHER"

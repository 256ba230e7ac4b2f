"""Transaction ingestion - maps remote transactions into internal ones."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from integrations.open_finance_protocol import RemoteTransaction
from models import (
    ConnectedAccount,
    Institution,
    Transaction,
    TransactionCategory,
    TransactionSource,
    TransactionSourceEntity,
    TransactionSubtype,
    TransactionType,
)
from models.utils import as_naive_utc, utc_now
from services.exceptions import TransactionMappingError

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Open Finance Transaction"
DEFAULT_CATEGORY_NAME = "Open Finance"

_SOURCE_BY_ACCOUNT_TYPE = {
    "CHECKING": TransactionSource.BANK_TRANSACTION,
    "SAVINGS": TransactionSource.BANK_TRANSACTION,
    "CREDIT_CARD": TransactionSource.CREDIT_CARD,
    "DEBIT_CARD": TransactionSource.DEBIT_CARD,
}


@dataclass
class IngestionResult:
    imported: int = 0
    duplicates: int = 0
    failures: list[TransactionMappingError] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


class TransactionIngestionMapper:
    """Normalizes remote transactions and inserts them idempotently.

    The remote transaction ID is stored as both ``external_reference`` and
    ``bank_reference``; a record whose external reference already exists
    for the account is skipped.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    @staticmethod
    def classify_source(account_type: Optional[str]) -> TransactionSource:
        """Map an account type to a transaction source. Unknown types map to OTHER."""
        if not account_type:
            return TransactionSource.OTHER
        return _SOURCE_BY_ACCOUNT_TYPE.get(account_type.strip().upper(), TransactionSource.OTHER)

    def map(
        self,
        remote: RemoteTransaction,
        account: ConnectedAccount,
        category: Optional[TransactionCategory],
        source_entity: Optional[TransactionSourceEntity],
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """Build an (unsaved) Transaction from ``remote``.

        Raises:
            TransactionMappingError: if the record has no ID or no amount.
        """
        if not remote.transaction_id or not remote.transaction_id.strip():
            raise TransactionMappingError("", "missing transaction id")
        if remote.amount is None:
            raise TransactionMappingError(remote.transaction_id, "missing or unparseable amount")

        indicator = (remote.credit_debit_indicator or "DEBIT").strip().upper()
        tx_type = TransactionType.INCOME if indicator == "CREDIT" else TransactionType.EXPENSE
        description = (remote.description or "").strip() or DEFAULT_DESCRIPTION
        booked = remote.booking_date or (as_naive_utc(now) if now is not None else self._clock())

        return Transaction(
            user_id=user_id,
            connected_account_id=account.id,
            description=description,
            amount=abs(remote.amount),
            type=tx_type.value,
            subtype=TransactionSubtype.VARIABLE.value,
            source=self.classify_source(account.account_type).value,
            transaction_date=as_naive_utc(booked),
            external_reference=remote.transaction_id,
            bank_reference=remote.transaction_id,
            category_id=category.id if category is not None else None,
            source_entity_id=source_entity.id if source_entity is not None else None,
        )

    @staticmethod
    def get_or_create_category(db: Session) -> TransactionCategory:
        category = (
            db.query(TransactionCategory)
            .filter(TransactionCategory.name == DEFAULT_CATEGORY_NAME)
            .first()
        )
        if category is None:
            category = TransactionCategory(name=DEFAULT_CATEGORY_NAME)
            db.add(category)
            db.flush()
        return category

    @staticmethod
    def get_or_create_source_entity(
        db: Session,
        user_id: str,
        account: ConnectedAccount,
        institution: Institution,
    ) -> TransactionSourceEntity:
        """Per-user source entity named "<institution> - <account number>"."""
        identifier = account.account_number or account.external_account_id
        name = f"{institution.name} - {identifier}"
        entity = (
            db.query(TransactionSourceEntity)
            .filter(
                TransactionSourceEntity.user_id == user_id,
                TransactionSourceEntity.name == name,
            )
            .first()
        )
        if entity is None:
            entity = TransactionSourceEntity(
                user_id=user_id,
                name=name,
                source_type=TransactionSource.BANK_TRANSACTION.value,
                bank_name=institution.name,
                account_number=account.account_number,
                is_active=True,
            )
            db.add(entity)
            db.flush()
        return entity

    def ingest(
        self,
        db: Session,
        user_id: str,
        account: ConnectedAccount,
        institution: Institution,
        remote_transactions: list[RemoteTransaction],
        now: Optional[datetime] = None,
    ) -> IngestionResult:
        """Map and insert ``remote_transactions`` for one account.

        Rows are flushed, not committed; the caller commits together with
        the account's sync state.
        """
        result = IngestionResult()
        if not remote_transactions:
            return result

        category = self.get_or_create_category(db)
        source_entity = self.get_or_create_source_entity(db, user_id, account, institution)
        seen = {
            ref
            for (ref,) in db.query(Transaction.external_reference).filter(
                Transaction.connected_account_id == account.id,
                Transaction.external_reference.isnot(None),
            )
        }

        for remote in remote_transactions:
            if remote.transaction_id and remote.transaction_id in seen:
                result.duplicates += 1
                continue
            try:
                transaction = self.map(remote, account, category, source_entity, user_id, now)
            except TransactionMappingError as e:
                logger.warning("Account %s: skipping unmappable record: %s", account.id, e)
                result.failures.append(e)
                continue
            db.add(transaction)
            seen.add(transaction.external_reference)
            result.imported += 1

        db.flush()
        logger.debug(
            "Account %s: %d imported, %d duplicates, %d unmappable",
            account.id, result.imported, result.duplicates, len(result.failures),
        )
        return result

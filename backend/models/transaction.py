"""Transaction models - the internal shape imported Open Finance records land in."""

from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid, utc_now


class TransactionCategory(Base):
    """A transaction category. Ingestion files everything under one shared category."""

    __tablename__ = "transaction_categories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=utc_now)


class TransactionSourceEntity(Base):
    """The per-user bank/card a transaction was paid from or into."""

    __tablename__ = "transaction_source_entities"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uix_source_entity_user_name"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    name = Column(String, nullable=False)
    source_type = Column(String(50), nullable=False)
    bank_name = Column(String, nullable=True)
    account_number = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now)


class Transaction(Base):
    """A user transaction.

    Imported rows carry the remote transaction id in ``external_reference``;
    the (connected_account_id, external_reference) pair is the idempotency
    key for re-ingestion.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "connected_account_id", "external_reference",
            name="uix_transaction_account_external_reference",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    connected_account_id = Column(
        String(36), ForeignKey("connected_accounts.id"), nullable=True, index=True
    )
    description = Column(String, nullable=False)
    amount = Column(Numeric(19, 2), nullable=False, default=Decimal("0"))
    type = Column(String(20), nullable=False)  # INCOME | EXPENSE
    subtype = Column(String(20), nullable=False)  # FIXED | VARIABLE
    source = Column(String(50), nullable=False)
    transaction_date = Column(DateTime, nullable=False)
    external_reference = Column(String(255), nullable=True, index=True)
    bank_reference = Column(String(255), nullable=True)
    category_id = Column(String(36), ForeignKey("transaction_categories.id"), nullable=True)
    source_entity_id = Column(
        String(36), ForeignKey("transaction_source_entities.id"), nullable=True
    )
    created_at = Column(DateTime, default=utc_now)

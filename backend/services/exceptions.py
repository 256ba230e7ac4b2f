"""Service-level errors raised by the consent and sync services.

Wire-level failures live in :mod:`integrations.exceptions`; the errors
here describe precondition violations and consent state problems that
the API layer maps to 4xx responses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.validation import ValidationIssue


class OpenFinanceServiceError(Exception):
    """Base class for service-level errors."""


class NotFoundError(OpenFinanceServiceError):
    """A referenced entity does not exist (or belongs to another user)."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidRequestError(OpenFinanceServiceError):
    """A request failed explicit validation; ``issues`` lists every problem."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = list(issues)
        summary = "; ".join(f"{i.field}: {i.message}" for i in self.issues)
        super().__init__(f"Invalid request: {summary}")


class ConsentStateError(OpenFinanceServiceError):
    """The consent is not in a state that allows the requested transition."""


class ConsentExpiredError(OpenFinanceServiceError):
    """The consent's token is unusable (expired, revoked, or refresh failed).

    Blocks a sync attempt immediately and is never retried.
    """

    def __init__(self, consent_id: str, message: str | None = None):
        self.consent_id = consent_id
        super().__init__(message or f"Consent {consent_id} is expired or inactive")


class NotSyncableError(OpenFinanceServiceError):
    """The account is DISABLED or its consent is no longer active."""

    def __init__(self, account_id: str, reason: str = "account is not syncable"):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Account {account_id}: {reason}")


class AlreadySyncingError(OpenFinanceServiceError):
    """A sync is already in flight for the account."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is already syncing")


class TransactionMappingError(OpenFinanceServiceError):
    """A remote transaction cannot be converted into an internal transaction.

    Counted toward a PARTIAL sync outcome; never aborts the sync.
    """

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Transaction {transaction_id or '<missing id>'}: {reason}")

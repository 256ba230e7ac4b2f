"""Protocol definitions for the Open Finance collaborators.

The sync orchestrator and consent manager depend only on these
interfaces; the httpx implementation lives in
:mod:`integrations.open_finance_client` and tests substitute mocks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from models import ConnectedAccount, Institution


@dataclass
class RemoteBalance:
    """Balance reported by the institution for one account."""

    account_id: str  # Institution's external account ID
    amount: Decimal
    currency: str = "BRL"
    reported_at: datetime | None = None


@dataclass
class RemoteTransaction:
    """A transaction record as returned by the institution.

    Only ``transaction_id`` is guaranteed; everything else may be missing
    and is defaulted (or rejected) during ingestion.
    """

    transaction_id: str
    amount: Decimal | None
    credit_debit_indicator: str | None = None  # "CREDIT" | "DEBIT"
    description: str | None = None
    booking_date: datetime | None = None
    raw_data: dict | None = None  # Raw API payload for debugging


@dataclass
class RemoteAccount:
    """An account listed by the institution after authorization."""

    account_id: str
    account_type: str
    account_number: str | None = None
    branch: str | None = None
    account_holder_name: str | None = None
    currency: str = "BRL"


@dataclass
class TokenResponse:
    """Result of an authorization-code or refresh-token grant."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int = 3600  # Seconds
    scope: str | None = None
    issued_at: datetime | None = None

    def expires_at(self, now: datetime) -> datetime:
        return (self.issued_at or now) + timedelta(seconds=self.expires_in)


@dataclass
class InstitutionRecord:
    """One participant entry from the institution directory."""

    code: str
    name: str
    api_base_url: str
    authorization_url: str
    token_url: str
    revocation_url: str | None = None
    certificate_required: bool = True
    is_active: bool = True
    raw_data: dict = field(default_factory=dict)


class ExternalAPIClient(Protocol):
    """Data access against an institution's account information API."""

    def fetch_balance(
        self, institution: Institution, account: ConnectedAccount, token: str
    ) -> RemoteBalance:
        """Fetch the current balance for ``account``.

        Raises:
            ExternalApiError: on any remote or network failure.
        """
        ...

    def fetch_transactions(
        self,
        institution: Institution,
        account: ConnectedAccount,
        token: str,
        since: datetime,
    ) -> list[RemoteTransaction]:
        """Fetch every transaction booked at or after ``since`` (all pages)."""
        ...

    def fetch_accounts(self, institution: Institution, token: str) -> list[RemoteAccount]:
        """List the accounts the consent grants access to."""
        ...


class OAuthClient(Protocol):
    """Token endpoint operations for an institution's OAuth server."""

    def exchange_authorization_code(
        self, institution: Institution, code: str, redirect_uri: str
    ) -> TokenResponse:
        ...

    def refresh_access_token(
        self, institution: Institution, refresh_token: str
    ) -> TokenResponse:
        ...

    def revoke_token(
        self, institution: Institution, token: str, token_type_hint: str = "access_token"
    ) -> None:
        ...


class InstitutionDirectory(Protocol):
    """Source of participant metadata for the institution registry."""

    def fetch_institutions(self) -> list[InstitutionRecord]:
        ...

"""Open Finance API client.

This module implements the ExternalAPIClient and OAuthClient protocols
over httpx: the OAuth token endpoint (code exchange, refresh, revoke)
and the account information API (accounts, balances, transactions).

Retries are deliberately not performed here; the sync orchestrator owns
the retry policy and needs every failure surfaced as a typed error.
"""

import logging
import ssl
from datetime import datetime

import httpx

from config import settings
from integrations.exceptions import (
    ConfigurationError,
    ExternalApiAuthError,
    ExternalApiConnectionError,
    ExternalApiDataError,
    ExternalApiError,
)
from integrations.open_finance_protocol import (
    RemoteAccount,
    RemoteBalance,
    RemoteTransaction,
    TokenResponse,
)
from integrations.parsing_utils import format_iso_datetime, parse_amount, parse_iso_datetime
from models import ConnectedAccount, Institution
from models.utils import utc_now

logger = logging.getLogger(__name__)

ACCOUNTS_ENDPOINT = "/open-banking/accounts/v1/accounts"
BALANCES_ENDPOINT = "/open-banking/accounts/v1/balances"
TRANSACTIONS_ENDPOINT = "/open-banking/accounts/v1/transactions"
PAGE_SIZE = 100
# Upper bound on pages followed for a single account fetch
MAX_PAGES = 500


class OpenFinanceClient:
    """httpx-backed client for institution OAuth and account information APIs.

    Institutions flagged ``certificate_required`` are called over mutual
    TLS using the configured client certificate, private key and CA bundle.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        client_cert_path: str | None = None,
        private_key_path: str | None = None,
        ca_cert_path: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client with credentials.

        Args:
            client_id: OAuth client ID (defaults to settings).
            client_secret: OAuth client secret (defaults to settings).
            client_cert_path: PEM client certificate for mutual TLS.
            private_key_path: PEM private key matching the certificate.
            ca_cert_path: CA bundle used to verify institution servers.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests inject MockTransport).
        """
        self._client_id = client_id or settings.OPEN_FINANCE_CLIENT_ID
        self._client_secret = client_secret or settings.OPEN_FINANCE_CLIENT_SECRET
        self._client_cert_path = client_cert_path or settings.OPEN_FINANCE_CLIENT_CERT_PATH
        self._private_key_path = private_key_path or settings.OPEN_FINANCE_PRIVATE_KEY_PATH
        self._ca_cert_path = ca_cert_path or settings.OPEN_FINANCE_CA_CERT_PATH
        self._timeout = timeout
        self._transport = transport

        # Lazily created on first use
        self._plain_client: httpx.Client | None = None
        self._mtls_client: httpx.Client | None = None

    def close(self) -> None:
        """Close the underlying HTTP clients."""
        for client in (self._plain_client, self._mtls_client):
            if client is not None:
                client.close()
        self._plain_client = None
        self._mtls_client = None

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def _build_ssl_context(self) -> ssl.SSLContext:
        if not (self._client_cert_path and self._private_key_path):
            raise ConfigurationError(
                "Institution requires a client certificate but "
                "OPEN_FINANCE_CLIENT_CERT_PATH / OPEN_FINANCE_PRIVATE_KEY_PATH are not set"
            )
        context = ssl.create_default_context(cafile=self._ca_cert_path or None)
        context.load_cert_chain(self._client_cert_path, self._private_key_path)
        return context

    def _http_for(self, institution: Institution) -> httpx.Client:
        """Return (and cache) the httpx client suited to ``institution``."""
        if institution.certificate_required and self._transport is None:
            if self._mtls_client is None:
                self._mtls_client = httpx.Client(
                    timeout=self._timeout, verify=self._build_ssl_context()
                )
            return self._mtls_client
        if self._plain_client is None:
            self._plain_client = httpx.Client(
                timeout=self._timeout, transport=self._transport
            )
        return self._plain_client

    def _request(
        self,
        institution: Institution,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Send a request, translating httpx failures into typed API errors."""
        code = institution.code
        try:
            response = self._http_for(institution).request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise ExternalApiAuthError(
                    f"{code}: authorization rejected (HTTP {status})",
                    institution_code=code,
                    status_code=status,
                ) from exc
            raise ExternalApiError(
                f"{code}: API error (HTTP {status})",
                institution_code=code,
                status_code=status,
            ) from exc
        except (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError) as exc:
            raise ExternalApiConnectionError(
                f"{code}: connection failed: {exc}",
                institution_code=code,
            ) from exc

    @staticmethod
    def _json(institution: Institution, response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalApiDataError(
                f"{institution.code}: response is not valid JSON",
                institution_code=institution.code,
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ExternalApiDataError(
                f"{institution.code}: expected a JSON object",
                institution_code=institution.code,
                status_code=response.status_code,
            )
        return body

    # ------------------------------------------------------------------
    # OAuthClient protocol
    # ------------------------------------------------------------------

    def _token_request(self, institution: Institution, form: dict[str, str]) -> TokenResponse:
        form = {**form, "client_id": self._client_id, "client_secret": self._client_secret}
        response = self._request(institution, "POST", institution.token_url, data=form)
        body = self._json(institution, response)
        access_token = body.get("access_token")
        if not access_token:
            raise ExternalApiDataError(
                f"{institution.code}: token response missing access_token",
                institution_code=institution.code,
            )
        return TokenResponse(
            access_token=access_token,
            refresh_token=body.get("refresh_token"),
            token_type=body.get("token_type", "Bearer"),
            expires_in=int(body.get("expires_in", 3600)),
            scope=body.get("scope"),
            issued_at=utc_now(),
        )

    def exchange_authorization_code(
        self, institution: Institution, code: str, redirect_uri: str
    ) -> TokenResponse:
        logger.debug("Exchanging authorization code with %s", institution.code)
        token = self._token_request(
            institution,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        logger.info("%s: authorization code exchanged", institution.code)
        return token

    def refresh_access_token(self, institution: Institution, refresh_token: str) -> TokenResponse:
        logger.debug("Refreshing access token with %s", institution.code)
        token = self._token_request(
            institution,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        logger.info("%s: access token refreshed", institution.code)
        return token

    def revoke_token(
        self, institution: Institution, token: str, token_type_hint: str = "access_token"
    ) -> None:
        form = {
            "token": token,
            "token_type_hint": token_type_hint,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        self._request(institution, "POST", institution.effective_revocation_url, data=form)
        logger.info("%s: token revoked", institution.code)

    # ------------------------------------------------------------------
    # ExternalAPIClient protocol
    # ------------------------------------------------------------------

    @staticmethod
    def _auth_headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def fetch_accounts(self, institution: Institution, token: str) -> list[RemoteAccount]:
        url = institution.api_base_url.rstrip("/") + ACCOUNTS_ENDPOINT
        body = self._json(
            institution,
            self._request(institution, "GET", url, headers=self._auth_headers(token)),
        )
        accounts = []
        for entry in body.get("data") or []:
            account_id = entry.get("accountId")
            if not account_id:
                logger.warning("%s: skipping account without accountId", institution.code)
                continue
            accounts.append(
                RemoteAccount(
                    account_id=account_id,
                    account_type=entry.get("accountType") or entry.get("type") or "OTHER",
                    account_number=entry.get("number"),
                    branch=entry.get("branchCode") or entry.get("branch"),
                    account_holder_name=entry.get("name"),
                    currency=entry.get("currency") or "BRL",
                )
            )
        logger.info("%s: fetched %d accounts", institution.code, len(accounts))
        return accounts

    def fetch_balance(
        self, institution: Institution, account: ConnectedAccount, token: str
    ) -> RemoteBalance:
        url = f"{institution.api_base_url.rstrip('/')}{BALANCES_ENDPOINT}/{account.external_account_id}"
        body = self._json(
            institution,
            self._request(institution, "GET", url, headers=self._auth_headers(token)),
        )
        data = body.get("data") or {}
        balance_node = data.get("balance", data.get("availableAmount"))
        amount = parse_amount(balance_node)
        if amount is None:
            raise ExternalApiDataError(
                f"{institution.code}: balance response for {account.external_account_id} has no amount",
                institution_code=institution.code,
            )
        currency = (
            balance_node.get("currency") if isinstance(balance_node, dict) else None
        ) or data.get("currency") or account.currency or "BRL"
        return RemoteBalance(
            account_id=account.external_account_id,
            amount=amount,
            currency=currency,
            reported_at=parse_iso_datetime(data.get("updateDateTime")),
        )

    def fetch_transactions(
        self,
        institution: Institution,
        account: ConnectedAccount,
        token: str,
        since: datetime,
    ) -> list[RemoteTransaction]:
        url = f"{institution.api_base_url.rstrip('/')}{TRANSACTIONS_ENDPOINT}/{account.external_account_id}"
        transactions: list[RemoteTransaction] = []
        page = 1
        total_pages = 1
        while page <= total_pages and page <= MAX_PAGES:
            params = {
                "page": page,
                "page-size": PAGE_SIZE,
                "fromBookingDateTime": format_iso_datetime(since),
            }
            body = self._json(
                institution,
                self._request(
                    institution, "GET", url,
                    headers=self._auth_headers(token), params=params,
                ),
            )
            data = body.get("data") or {}
            entries = data.get("transaction", []) if isinstance(data, dict) else data
            for entry in entries or []:
                transactions.append(self._parse_transaction(entry))
            total_pages = int((body.get("meta") or {}).get("totalPages", 1) or 1)
            page += 1

        logger.info(
            "%s: fetched %d transactions for account %s",
            institution.code, len(transactions), account.external_account_id,
        )
        return transactions

    @staticmethod
    def _parse_transaction(entry: dict) -> RemoteTransaction:
        return RemoteTransaction(
            transaction_id=entry.get("transactionId") or "",
            amount=parse_amount(entry.get("amount", entry.get("transactionAmount"))),
            credit_debit_indicator=entry.get("creditDebitIndicator") or entry.get("creditDebitType"),
            description=entry.get("transactionInformation") or entry.get("transactionName"),
            booking_date=parse_iso_datetime(
                entry.get("bookingDateTime") or entry.get("transactionDateTime")
            ),
            raw_data=entry,
        )

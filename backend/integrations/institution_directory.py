"""HTTP client for the Open Finance participant directory."""

import logging

import httpx

from config import settings
from integrations.exceptions import (
    ExternalApiConnectionError,
    ExternalApiDataError,
    ExternalApiError,
)
from integrations.open_finance_protocol import InstitutionRecord

logger = logging.getLogger(__name__)

DIRECTORY_CODE = "directory"


def _first(entry: dict, *keys: str):
    for key in keys:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_institution_record(entry: dict) -> InstitutionRecord | None:
    """Convert one directory entry into an InstitutionRecord.

    Accepts both camelCase and snake_case keys. Returns None when any of
    the identity or endpoint fields are missing.
    """
    code = _first(entry, "code", "institutionCode", "organisationId")
    name = _first(entry, "name", "organisationName")
    api_base_url = _first(entry, "apiBaseUrl", "api_base_url")
    authorization_url = _first(entry, "authorizationUrl", "authorization_url")
    token_url = _first(entry, "tokenUrl", "token_url")
    if not all((code, name, api_base_url, authorization_url, token_url)):
        return None

    certificate_required = _first(entry, "certificateRequired", "certificate_required")
    is_active = _first(entry, "active", "isActive", "is_active")
    return InstitutionRecord(
        code=str(code),
        name=name,
        api_base_url=api_base_url,
        authorization_url=authorization_url,
        token_url=token_url,
        revocation_url=_first(entry, "revocationUrl", "revocation_url"),
        certificate_required=True if certificate_required is None else bool(certificate_required),
        is_active=True if is_active is None else bool(is_active),
        raw_data=entry,
    )


class HttpInstitutionDirectory:
    """Fetches participant metadata from the configured directory endpoint."""

    def __init__(
        self,
        endpoint: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._endpoint = endpoint or settings.INSTITUTION_REGISTRY_ENDPOINT
        self._timeout = timeout
        self._transport = transport

    def fetch_institutions(self) -> list[InstitutionRecord]:
        """Download and parse the directory.

        Raises:
            ExternalApiError: on HTTP, network or payload failures.
        """
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(self._endpoint, headers={"Accept": "application/json"})
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalApiError(
                f"Institution directory returned HTTP {exc.response.status_code}",
                institution_code=DIRECTORY_CODE,
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ExternalApiConnectionError(
                f"Institution directory unreachable: {exc}",
                institution_code=DIRECTORY_CODE,
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalApiDataError(
                "Institution directory response is not valid JSON",
                institution_code=DIRECTORY_CODE,
            ) from exc

        entries = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(entries, list):
            raise ExternalApiDataError(
                "Institution directory response has no institution list",
                institution_code=DIRECTORY_CODE,
            )

        records = []
        for entry in entries:
            record = parse_institution_record(entry) if isinstance(entry, dict) else None
            if record is None:
                logger.warning("Skipping incomplete directory entry: %r", entry)
                continue
            records.append(record)
        logger.info("Fetched %d institutions from directory", len(records))
        return records

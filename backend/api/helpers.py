"""Shared API helpers for route handlers.

Dependency getters (overridden in tests) and the mapping from service and
integration errors to HTTP responses.
"""

import logging

from fastapi import Header, HTTPException

from integrations.exceptions import ConfigurationError, ExternalApiError, OpenFinanceError
from services.account_sync_orchestrator import AccountSyncOrchestrator
from services.consent_manager import ConsentManager
from services.exceptions import (
    AlreadySyncingError,
    ConsentExpiredError,
    ConsentStateError,
    InvalidRequestError,
    NotFoundError,
    NotSyncableError,
    OpenFinanceServiceError,
)
from services.institution_registry import InstitutionRegistry

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (InvalidRequestError, 422),
    (NotFoundError, 404),
    (AlreadySyncingError, 409),
    (ConsentStateError, 409),
    (NotSyncableError, 409),
    (ConsentExpiredError, 401),
    (ConfigurationError, 503),
    (ExternalApiError, 502),
]


def get_current_user_id(x_user_id: str = Header(..., min_length=1, max_length=36)) -> str:
    """The acting user, passed explicitly by the upstream gateway."""
    return x_user_id


def get_registry() -> InstitutionRegistry:
    """Get the institution registry (dependency for injection in tests)."""
    return InstitutionRegistry()


def get_consent_manager() -> ConsentManager:
    return ConsentManager()


def get_orchestrator() -> AccountSyncOrchestrator:
    return AccountSyncOrchestrator()


def to_http_exception(exc: OpenFinanceServiceError | OpenFinanceError) -> HTTPException:
    """Translate a known service or integration error into an HTTPException."""
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    if isinstance(exc, InvalidRequestError):
        detail = [
            {"field": issue.field, "message": issue.message, "code": issue.code}
            for issue in exc.issues
        ]
        return HTTPException(status_code=422, detail=detail)
    if isinstance(exc, ConfigurationError):
        logger.error("Open Finance configuration error: %s", exc)
        return HTTPException(status_code=503, detail="Open Finance is not configured.")
    if isinstance(exc, ExternalApiError):
        logger.warning("Institution API error: %s", exc)
        return HTTPException(
            status_code=502,
            detail=f"Institution API error ({exc.institution_code or 'unknown'}).",
        )
    return HTTPException(status_code=status_code, detail=str(exc))


def internal_error(action: str) -> HTTPException:
    """Log the active exception and return a generic 500 that never exposes str(e)."""
    logger.error("Unexpected error while %s", action, exc_info=True)
    return HTTPException(status_code=500, detail=f"An unexpected error occurred while {action}.")

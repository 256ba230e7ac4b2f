"""Unit tests for API error mapping."""

import pytest

from api.helpers import internal_error, to_http_exception
from integrations.exceptions import ConfigurationError, ExternalApiError
from services.exceptions import (
    AlreadySyncingError,
    ConsentExpiredError,
    ConsentStateError,
    InvalidRequestError,
    NotFoundError,
    NotSyncableError,
)
from services.validation import ValidationIssue


class TestToHttpException:
    @pytest.mark.parametrize(
        "error,status",
        [
            (NotFoundError("Consent", "c1"), 404),
            (AlreadySyncingError("a1"), 409),
            (ConsentStateError("already authorized"), 409),
            (NotSyncableError("a1"), 409),
            (ConsentExpiredError("c1"), 401),
        ],
    )
    def test_status_codes(self, error, status):
        exc = to_http_exception(error)
        assert exc.status_code == status
        assert exc.detail == str(error)

    def test_invalid_request_lists_issues(self):
        exc = to_http_exception(
            InvalidRequestError([ValidationIssue("user_id", "is required", "required")])
        )
        assert exc.status_code == 422
        assert exc.detail == [{"field": "user_id", "message": "is required", "code": "required"}]

    def test_configuration_error_hides_details(self):
        exc = to_http_exception(ConfigurationError("OPEN_FINANCE_CLIENT_SECRET missing"))
        assert exc.status_code == 503
        assert "SECRET" not in exc.detail

    def test_external_api_error(self):
        exc = to_http_exception(ExternalApiError("HTTP 500 body", institution_code="BANKA", status_code=500))
        assert exc.status_code == 502
        assert exc.detail == "Institution API error (BANKA)."


def test_internal_error_is_generic():
    try:
        raise RuntimeError("secret detail")
    except RuntimeError:
        exc = internal_error("syncing account")
    assert exc.status_code == 500
    assert "secret detail" not in exc.detail

"""Tests for Settings validators and derived properties."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config import Settings


@pytest.fixture(autouse=True)
def no_keychain():
    with patch("config.get_credential", return_value=None):
        yield


def _settings(**values) -> Settings:
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, **values)


class TestSyncPolicyValidation:
    def test_defaults(self):
        s = _settings()
        assert s.BALANCE_SYNC_INTERVAL_MINUTES == 15
        assert s.TRANSACTION_SYNC_INTERVAL_HOURS == 24
        assert s.TOKEN_REFRESH_BEFORE_EXPIRATION_MINUTES == 5
        assert s.MAX_RETRY_ATTEMPTS == 3
        assert s.RETRY_DELAY_MS == 5000

    @pytest.mark.parametrize(
        "field",
        [
            "BALANCE_SYNC_INTERVAL_MINUTES",
            "TRANSACTION_SYNC_INTERVAL_HOURS",
            "INSTITUTION_REGISTRY_REFRESH_INTERVAL_HOURS",
            "SYNC_WORKER_COUNT",
            "MAX_RETRY_ATTEMPTS",
        ],
    )
    def test_zero_rejected(self, field):
        with pytest.raises(ValidationError, match=field):
            _settings(**{field: 0})

    @pytest.mark.parametrize(
        "field",
        ["TOKEN_REFRESH_BEFORE_EXPIRATION_MINUTES", "RETRY_DELAY_MS", "TRANSACTION_LOOKBACK_DAYS"],
    )
    def test_negative_rejected(self, field):
        with pytest.raises(ValidationError, match=field):
            _settings(**{field: -1})

    def test_zero_retry_delay_allowed(self):
        assert _settings(RETRY_DELAY_MS=0).RETRY_DELAY_MS == 0


class TestDerivedProperties:
    def test_sandbox_base_url_by_default(self):
        s = _settings()
        assert s.open_finance_base_url == s.OPEN_FINANCE_SANDBOX_BASE_URL

    def test_production_base_url(self):
        s = _settings(OPEN_FINANCE_USE_PRODUCTION=True)
        assert s.open_finance_base_url == s.OPEN_FINANCE_PRODUCTION_BASE_URL

    def test_default_scopes_split(self):
        assert _settings().default_scopes == ["accounts", "transactions", "payments"]
        s = _settings(OPEN_FINANCE_DEFAULT_SCOPES="accounts  transactions,")
        assert s.default_scopes == ["accounts", "transactions"]

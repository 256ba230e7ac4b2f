"""Unit tests for ConsentManager."""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from integrations.exceptions import (
    ConfigurationError,
    ExternalApiAuthError,
    ExternalApiConnectionError,
    ExternalApiError,
)
from models import Consent, ConsentStatus
from services.consent_manager import ConsentManager
from services.exceptions import (
    ConsentExpiredError,
    ConsentStateError,
    InvalidRequestError,
    NotFoundError,
)
from tests.fixtures import TEST_CLIENT_ID, TEST_REDIRECT_URI
from tests.fixtures import OTHER_USER_ID, USER_ID, create_consent, create_institution
from tests.fixtures.mocks import NOW


class TestPredicates:
    def test_needs_refresh_inside_window(self, consent_manager, consent):
        # consent expires at NOW + 1h; window is 5 minutes
        assert consent_manager.needs_refresh(consent, NOW) is False
        assert consent_manager.needs_refresh(consent, NOW + timedelta(minutes=54, seconds=59)) is False
        assert consent_manager.needs_refresh(consent, NOW + timedelta(minutes=55)) is True

    def test_needs_refresh_without_expiry(self, consent_manager, pending_consent):
        assert consent_manager.needs_refresh(pending_consent, NOW) is False

    def test_is_expired_and_active(self, consent_manager, consent):
        expiry = consent.expires_at
        assert consent_manager.is_active(consent, expiry - timedelta(seconds=1)) is True
        assert consent_manager.is_expired(consent, expiry) is True
        assert consent_manager.is_active(consent, expiry + timedelta(seconds=1)) is False

    def test_build_authorization_url(self, consent_manager):
        url = consent_manager.build_authorization_url(
            "https://auth.example/authorize?tenant=x", ["accounts", "transactions"], "st"
        )
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert params["tenant"] == ["x"]
        assert params["response_type"] == ["code"]
        assert params["client_id"] == [TEST_CLIENT_ID]
        assert params["redirect_uri"] == [TEST_REDIRECT_URI]
        assert params["scope"] == ["accounts transactions"]
        assert params["state"] == ["st"]
        assert "%20" in url


class TestInitiateConsent:
    def test_creates_pending_consent(self, db, consent_manager, institution):
        initiation = consent_manager.initiate_consent(
            db, USER_ID, "BANKA", scopes=["accounts", "transactions"]
        )

        consent = initiation.consent
        assert consent.status == ConsentStatus.PENDING.value
        assert consent.scopes == "accounts,transactions"
        assert consent.state_token == initiation.state
        assert consent.access_token is None
        assert initiation.authorization_url.startswith("https://auth.banka.example/authorize?")
        assert f"state={initiation.state}" in initiation.authorization_url

    def test_default_scopes(self, db, consent_manager, institution):
        initiation = consent_manager.initiate_consent(db, USER_ID, "BANKA")
        assert initiation.consent.scope_list == ["accounts", "transactions", "payments"]

    def test_unknown_institution(self, db, consent_manager):
        with pytest.raises(NotFoundError):
            consent_manager.initiate_consent(db, USER_ID, "NOPE")

    def test_inactive_institution(self, db, consent_manager):
        create_institution(db, code="OFF", is_active=False)
        with pytest.raises(NotFoundError):
            consent_manager.initiate_consent(db, USER_ID, "OFF")

    def test_invalid_request(self, db, consent_manager):
        with pytest.raises(InvalidRequestError) as exc_info:
            consent_manager.initiate_consent(db, "", "", scopes=[])
        fields = {issue.field for issue in exc_info.value.issues}
        assert {"user_id", "institution_code"} <= fields

    def test_active_consent_blocks_new_one(self, db, consent_manager, consent):
        with pytest.raises(ConsentStateError):
            consent_manager.initiate_consent(db, USER_ID, "BANKA")

    def test_expired_authorized_consent_does_not_block(self, db, consent_manager, institution, cipher):
        create_consent(db, institution, expires_at=NOW - timedelta(minutes=1), cipher=cipher)
        initiation = consent_manager.initiate_consent(db, USER_ID, "BANKA")
        assert initiation.consent.status == ConsentStatus.PENDING.value

    def test_other_users_consent_does_not_block(self, db, consent_manager, consent):
        initiation = consent_manager.initiate_consent(db, OTHER_USER_ID, "BANKA")
        assert initiation.consent.user_id == OTHER_USER_ID

    def test_missing_credentials(self, db, mock_oauth_client, cipher, registry, clock, institution):
        manager = ConsentManager(
            oauth_client=mock_oauth_client,
            cipher=cipher,
            registry=registry,
            clock=clock,
            client_id="",
            client_secret="",
            redirect_uri=TEST_REDIRECT_URI,
        )
        with pytest.raises(ConfigurationError):
            manager.initiate_consent(db, USER_ID, "BANKA")


class TestHandleCallback:
    def test_authorizes_consent(self, db, consent_manager, pending_consent, mock_oauth_client, cipher):
        consent = consent_manager.handle_callback(db, pending_consent.id, "auth-code", "state-123")

        assert consent.status == ConsentStatus.AUTHORIZED.value
        assert consent.state_token is None
        assert consent.expires_at == NOW + timedelta(seconds=3600)
        assert cipher.decrypt(consent.access_token) == "exchanged-access-token-1"
        assert cipher.decrypt(consent.refresh_token) == "refresh-token-1"
        assert consent.access_token != "exchanged-access-token-1"
        assert mock_oauth_client.exchange_calls == [("BANKA", "auth-code", TEST_REDIRECT_URI)]

    def test_repeated_callback_is_noop(self, db, consent_manager, pending_consent, mock_oauth_client):
        consent_manager.handle_callback(db, pending_consent.id, "auth-code", "state-123")
        consent = consent_manager.handle_callback(db, pending_consent.id, "auth-code", "state-123")

        assert consent.status == ConsentStatus.AUTHORIZED.value
        assert len(mock_oauth_client.exchange_calls) == 1

    def test_state_mismatch_fails_consent(self, db, consent_manager, pending_consent, mock_oauth_client):
        consent = consent_manager.handle_callback(db, pending_consent.id, "auth-code", "forged")

        assert consent.status == ConsentStatus.FAILED.value
        assert consent.failure_reason == "OAuth state mismatch"
        assert mock_oauth_client.exchange_calls == []

    def test_missing_state_fails_consent(self, db, consent_manager, pending_consent, mock_oauth_client):
        consent = consent_manager.handle_callback(db, pending_consent.id, "auth-code", None)

        assert consent.status == ConsentStatus.FAILED.value
        assert consent.failure_reason == "OAuth state mismatch"
        assert consent.access_token is None
        assert mock_oauth_client.exchange_calls == []

    def test_exchange_failure_fails_consent(self, db, consent_manager, pending_consent, mock_oauth_client):
        mock_oauth_client.exchange_error = ExternalApiAuthError(
            "invalid_grant", institution_code="BANKA", status_code=400
        )
        consent = consent_manager.handle_callback(db, pending_consent.id, "bad-code", "state-123")

        assert consent.status == ConsentStatus.FAILED.value
        assert "invalid_grant" in consent.failure_reason
        assert consent.access_token is None

    def test_callback_on_revoked_consent(self, db, consent_manager, institution, cipher):
        revoked = create_consent(db, institution, status=ConsentStatus.REVOKED, cipher=cipher)
        with pytest.raises(ConsentStateError):
            consent_manager.handle_callback(db, revoked.id, "auth-code")

    def test_unknown_consent(self, db, consent_manager):
        with pytest.raises(NotFoundError):
            consent_manager.handle_callback(db, "missing", "auth-code")

    def test_missing_code(self, db, consent_manager, pending_consent):
        with pytest.raises(InvalidRequestError):
            consent_manager.handle_callback(db, pending_consent.id, "")


class TestRefreshToken:
    def test_refresh_within_window(self, db, consent_manager, consent, mock_oauth_client, cipher, clock):
        now = clock.advance(minutes=56)

        consent_manager.refresh_token(db, consent, now)

        assert mock_oauth_client.refresh_calls == [("BANKA", "stored-refresh-token")]
        assert cipher.decrypt(consent.access_token) == "refreshed-access-token-1"
        assert cipher.decrypt(consent.refresh_token) == "refresh-token-1"
        assert consent.expires_at == now + timedelta(seconds=3600)
        assert consent.status == ConsentStatus.AUTHORIZED.value

    def test_refresh_lock_shared_while_held_and_released_after(
        self, db, consent_manager, consent, institution
    ):
        lock = ConsentManager._lock_for(consent.id)
        assert ConsentManager._lock_for(consent.id) is lock
        del lock

        consent_manager.refresh_token(db, consent, NOW + timedelta(minutes=56))
        expired = create_consent(db, institution, user_id=OTHER_USER_ID, refresh_token=None)
        with pytest.raises(ConsentExpiredError):
            consent_manager.refresh_token(db, expired, NOW + timedelta(minutes=56))

        assert consent.id not in ConsentManager._refresh_locks
        assert expired.id not in ConsentManager._refresh_locks

    def test_keeps_refresh_token_when_not_rotated(self, db, consent_manager, consent, mock_oauth_client, cipher):
        mock_oauth_client.refresh_token = None
        consent_manager.refresh_token(db, consent, NOW + timedelta(minutes=56))
        assert cipher.decrypt(consent.refresh_token) == "stored-refresh-token"

    def test_not_due_is_noop(self, db, consent_manager, consent, mock_oauth_client):
        consent_manager.refresh_token(db, consent, NOW)
        assert mock_oauth_client.refresh_calls == []

    def test_rejected_refresh_expires_consent(self, db, consent_manager, consent, mock_oauth_client):
        mock_oauth_client.refresh_error = ExternalApiAuthError(
            "invalid_grant", institution_code="BANKA", status_code=401
        )
        with pytest.raises(ConsentExpiredError):
            consent_manager.refresh_token(db, consent, NOW + timedelta(minutes=56))

        db.refresh(consent)
        assert consent.status == ConsentStatus.EXPIRED.value
        assert "invalid_grant" in consent.failure_reason

    def test_transient_failure_leaves_consent_unchanged(self, db, consent_manager, consent, mock_oauth_client, cipher):
        mock_oauth_client.refresh_error = ExternalApiConnectionError("timeout", institution_code="BANKA")
        with pytest.raises(ExternalApiConnectionError):
            consent_manager.refresh_token(db, consent, NOW + timedelta(minutes=56))

        db.refresh(consent)
        assert consent.status == ConsentStatus.AUTHORIZED.value
        assert cipher.decrypt(consent.access_token) == "stored-access-token"
        assert consent.expires_at == NOW + timedelta(hours=1)

    def test_missing_refresh_token_expires_consent(self, db, consent_manager, institution, cipher):
        consent = create_consent(db, institution, refresh_token=None, cipher=cipher)
        with pytest.raises(ConsentExpiredError):
            consent_manager.refresh_token(db, consent, NOW + timedelta(minutes=56))
        assert consent.status == ConsentStatus.EXPIRED.value

    def test_revoked_consent_cannot_refresh(self, db, consent_manager, institution, cipher):
        consent = create_consent(db, institution, status=ConsentStatus.REVOKED, cipher=cipher)
        with pytest.raises(ConsentExpiredError):
            consent_manager.refresh_token(db, consent, NOW + timedelta(minutes=56))

    def test_second_caller_sees_refreshed_consent(
        self, db, session_factory, consent_manager, consent, mock_oauth_client
    ):
        other_session = session_factory()
        try:
            stale = other_session.get(Consent, consent.id)
            now = NOW + timedelta(minutes=56)

            consent_manager.refresh_token(db, consent, now)
            consent_manager.refresh_token(other_session, stale, now)
        finally:
            other_session.close()

        assert len(mock_oauth_client.refresh_calls) == 1


class TestGetValidAccessToken:
    def test_returns_decrypted_token(self, db, consent_manager, consent, mock_oauth_client):
        assert consent_manager.get_valid_access_token(db, consent, NOW) == "stored-access-token"
        assert mock_oauth_client.refresh_calls == []

    def test_refreshes_when_due(self, db, consent_manager, consent):
        token = consent_manager.get_valid_access_token(db, consent, NOW + timedelta(minutes=58))
        assert token == "refreshed-access-token-1"

    def test_pending_consent_is_rejected(self, db, consent_manager, pending_consent):
        with pytest.raises(ConsentExpiredError):
            consent_manager.get_valid_access_token(db, pending_consent, NOW)

    def test_expired_consent_with_rejected_refresh(self, db, consent_manager, consent, mock_oauth_client):
        mock_oauth_client.refresh_error = ExternalApiAuthError(
            "revoked upstream", institution_code="BANKA", status_code=401
        )
        with pytest.raises(ConsentExpiredError):
            consent_manager.get_valid_access_token(db, consent, NOW + timedelta(hours=2))


class TestRevoke:
    def test_revoke_clears_tokens(self, db, consent_manager, consent, mock_oauth_client, clock):
        revoked = consent_manager.revoke(db, consent)

        assert revoked.status == ConsentStatus.REVOKED.value
        assert revoked.revoked_at == clock.now
        assert revoked.access_token is None
        assert revoked.refresh_token is None
        assert mock_oauth_client.revoke_calls == [("BANKA", "stored-access-token", "access_token")]
        assert consent_manager.is_active(revoked, NOW) is False

    def test_revoke_is_idempotent(self, db, consent_manager, consent, mock_oauth_client):
        consent_manager.revoke(db, consent)
        consent_manager.revoke(db, consent)
        assert len(mock_oauth_client.revoke_calls) == 1

    def test_remote_failure_still_revokes_locally(self, db, consent_manager, consent, mock_oauth_client):
        mock_oauth_client.revoke_error = ExternalApiError("boom", institution_code="BANKA", status_code=500)
        revoked = consent_manager.revoke(db, consent)
        assert revoked.status == ConsentStatus.REVOKED.value

    def test_refresh_after_revoke_fails(self, db, consent_manager, consent):
        consent_manager.revoke(db, consent)
        with pytest.raises(ConsentExpiredError):
            consent_manager.get_valid_access_token(db, consent, NOW)


class TestRefreshExpiringTokens:
    def test_sweep(self, db, consent_manager, institution, cipher, mock_oauth_client):
        due = create_consent(db, institution, expires_at=NOW + timedelta(minutes=3), cipher=cipher)
        not_due = create_consent(
            db, institution, user_id=OTHER_USER_ID, expires_at=NOW + timedelta(hours=2), cipher=cipher
        )
        no_refresh = create_consent(
            db, institution, user_id="user-3", expires_at=NOW + timedelta(minutes=1),
            refresh_token=None, cipher=cipher,
        )

        result = consent_manager.refresh_expiring_tokens(db, NOW)

        assert result.refreshed == [due.id]
        assert result.expired == [no_refresh.id]
        assert result.failed == []
        assert not_due.id not in result.refreshed

    def test_transient_failures_reported(self, db, consent_manager, institution, cipher, mock_oauth_client):
        consent = create_consent(db, institution, expires_at=NOW + timedelta(minutes=3), cipher=cipher)
        mock_oauth_client.refresh_error = ExternalApiConnectionError("down", institution_code="BANKA")

        result = consent_manager.refresh_expiring_tokens(db, NOW)

        assert result.failed == [consent.id]


class TestAccessors:
    def test_get_consent_scoped_to_user(self, db, consent_manager, consent):
        assert consent_manager.get_consent(db, consent.id, USER_ID).id == consent.id
        with pytest.raises(NotFoundError):
            consent_manager.get_consent(db, consent.id, OTHER_USER_ID)

    def test_list_consents_filters_by_status(self, db, consent_manager, consent, pending_consent):
        all_ids = {c.id for c in consent_manager.list_consents(db, USER_ID)}
        assert all_ids == {consent.id, pending_consent.id}

        pending = consent_manager.list_consents(db, USER_ID, ConsentStatus.PENDING)
        assert [c.id for c in pending] == [pending_consent.id]
        assert consent_manager.list_consents(db, OTHER_USER_ID) == []

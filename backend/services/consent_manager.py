"""Consent manager - OAuth consent lifecycle and encrypted token storage."""

import logging
import secrets
import threading
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import quote, urlencode

from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ConfigurationError, ExternalApiError
from integrations.open_finance_protocol import OAuthClient, TokenResponse
from models import Consent, ConsentStatus
from models.utils import as_naive_utc, utc_now
from services.exceptions import ConsentExpiredError, ConsentStateError, NotFoundError
from services.institution_registry import InstitutionRegistry
from services.token_cipher import TokenCipher
from services.validation import (
    raise_if_invalid,
    validate_callback_request,
    validate_consent_request,
)

logger = logging.getLogger(__name__)


@dataclass
class ConsentInitiation:
    """Result of initiate_consent: the PENDING consent and where to send the user."""

    consent: Consent
    authorization_url: str
    state: str


@dataclass
class TokenSweepResult:
    refreshed: list[str] = field(default_factory=list)  # Consent IDs
    expired: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)  # Transient failures, retried next sweep


class ConsentManager:
    """Owns every write to a Consent.

    All methods take the acting user's ID or the consent explicitly; there
    is no ambient "current user". Each state transition is committed
    before the method returns.
    """

    # Keyed locks so concurrent sync workers sharing a consent refresh it once.
    # An entry lives only while some caller holds or waits on its lock.
    _refresh_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
        weakref.WeakValueDictionary()
    )
    _refresh_locks_guard = threading.Lock()

    def __init__(
        self,
        oauth_client: Optional[OAuthClient] = None,
        cipher: Optional[TokenCipher] = None,
        registry: Optional[InstitutionRegistry] = None,
        clock: Callable[[], datetime] = utc_now,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        refresh_before_minutes: Optional[int] = None,
    ):
        self._oauth_client = oauth_client
        self._cipher = cipher
        self.registry = registry or InstitutionRegistry(clock=clock)
        self._clock = clock
        self._client_id = client_id if client_id is not None else settings.OPEN_FINANCE_CLIENT_ID
        self._client_secret = (
            client_secret if client_secret is not None else settings.OPEN_FINANCE_CLIENT_SECRET
        )
        self._redirect_uri = redirect_uri or settings.OPEN_FINANCE_REDIRECT_URI
        if refresh_before_minutes is None:
            refresh_before_minutes = settings.TOKEN_REFRESH_BEFORE_EXPIRATION_MINUTES
        self._refresh_window = timedelta(minutes=refresh_before_minutes)

    @property
    def oauth_client(self) -> OAuthClient:
        if self._oauth_client is None:
            from integrations.open_finance_client import OpenFinanceClient

            self._oauth_client = OpenFinanceClient()
        return self._oauth_client

    @property
    def cipher(self) -> TokenCipher:
        if self._cipher is None:
            self._cipher = TokenCipher()
        return self._cipher

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_naive_utc(now) if now is not None else self._clock()

    @classmethod
    def _lock_for(cls, consent_id: str) -> threading.Lock:
        with cls._refresh_locks_guard:
            lock = cls._refresh_locks.get(consent_id)
            if lock is None:
                lock = threading.Lock()
                cls._refresh_locks[consent_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_expired(self, consent: Consent, now: Optional[datetime] = None) -> bool:
        """Wall-clock expiry check, independent of the stored status."""
        return consent.is_expired(self._now(now))

    def is_active(self, consent: Consent, now: Optional[datetime] = None) -> bool:
        return consent.is_active(self._now(now))

    def needs_refresh(self, consent: Consent, now: Optional[datetime] = None) -> bool:
        """True once ``now >= expires_at - TOKEN_REFRESH_BEFORE_EXPIRATION_MINUTES``."""
        if consent.expires_at is None:
            return False
        return self._now(now) >= as_naive_utc(consent.expires_at) - self._refresh_window

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_authorization_url(self, authorization_url: str, scopes: list[str], state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
        }
        separator = "&" if "?" in authorization_url else "?"
        return authorization_url + separator + urlencode(params, quote_via=quote)

    def initiate_consent(
        self,
        db: Session,
        user_id: str,
        institution_code: str,
        scopes: Optional[list[str]] = None,
    ) -> ConsentInitiation:
        """Create a PENDING consent and the redirect URL for the institution.

        Raises:
            InvalidRequestError: if the request fails validation.
            ConfigurationError: if OAuth client credentials are absent.
            NotFoundError: if the institution is unknown or inactive.
            ConsentStateError: if the user already has an active consent
                with this institution.
        """
        raise_if_invalid(validate_consent_request(user_id, institution_code, scopes))
        if not self._client_id or not self._client_secret:
            raise ConfigurationError(
                "Open Finance OAuth client credentials are not configured",
                institution_code=institution_code,
            )

        institution = self.registry.require_active(db, institution_code)
        now = self._clock()
        authorized = (
            db.query(Consent)
            .filter(
                Consent.user_id == user_id,
                Consent.institution_id == institution.id,
                Consent.status == ConsentStatus.AUTHORIZED.value,
            )
            .all()
        )
        if any(c.is_active(now) for c in authorized):
            raise ConsentStateError(
                f"User already has an active consent with {institution.code}"
            )

        requested = scopes if scopes is not None else settings.default_scopes
        state = secrets.token_urlsafe(32)
        consent = Consent(
            user_id=user_id,
            institution_id=institution.id,
            status=ConsentStatus.PENDING.value,
            scopes=",".join(requested),
            state_token=state,
        )
        db.add(consent)
        db.commit()
        db.refresh(consent)

        logger.info(
            "Initiated consent %s for user %s with %s (scopes=%s)",
            consent.id, user_id, institution.code, consent.scopes,
        )
        return ConsentInitiation(
            consent=consent,
            authorization_url=self.build_authorization_url(
                institution.authorization_url, requested, state
            ),
            state=state,
        )

    def _store_token(self, consent: Consent, token: TokenResponse, now: datetime) -> None:
        consent.access_token = self.cipher.encrypt(token.access_token)
        if token.refresh_token:
            consent.refresh_token = self.cipher.encrypt(token.refresh_token)
        consent.expires_at = as_naive_utc(token.expires_at(now))
        if token.scope:
            consent.scopes = ",".join(token.scope.replace(",", " ").split())

    def _fail(self, db: Session, consent: Consent, reason: str) -> Consent:
        consent.status = ConsentStatus.FAILED.value
        consent.failure_reason = reason
        consent.state_token = None
        db.commit()
        logger.warning("Consent %s failed: %s", consent.id, reason)
        return consent

    def handle_callback(
        self,
        db: Session,
        consent_id: str,
        authorization_code: str,
        state: Optional[str] = None,
    ) -> Consent:
        """Exchange the authorization code and authorize the consent.

        A repeated callback for an AUTHORIZED consent is a no-op. A failed
        exchange or a missing or mismatched state leaves the consent FAILED with the
        reason recorded; the consent is returned rather than raised.

        Raises:
            InvalidRequestError: if consent_id or code are missing.
            NotFoundError: if the consent does not exist.
            ConsentStateError: if the consent is REVOKED, EXPIRED or FAILED.
        """
        raise_if_invalid(validate_callback_request(consent_id, authorization_code))
        consent = self.get_consent(db, consent_id)

        if consent.status == ConsentStatus.AUTHORIZED.value:
            logger.info("Consent %s already authorized; ignoring repeated callback", consent.id)
            return consent
        if consent.status != ConsentStatus.PENDING.value:
            raise ConsentStateError(
                f"Consent {consent.id} is {consent.status}; callback not accepted"
            )
        expected = consent.state_token
        if not state or not expected or not secrets.compare_digest(state, expected):
            return self._fail(db, consent, "OAuth state mismatch")

        institution = self.registry.get(db, consent.institution_id)
        now = self._clock()
        try:
            token = self.oauth_client.exchange_authorization_code(
                institution, authorization_code, self._redirect_uri
            )
        except ExternalApiError as e:
            return self._fail(db, consent, f"Authorization code exchange failed: {e}")

        self._store_token(consent, token, now)
        consent.status = ConsentStatus.AUTHORIZED.value
        consent.state_token = None
        consent.failure_reason = None
        db.commit()
        db.refresh(consent)
        logger.info("Consent %s authorized (expires %s)", consent.id, consent.expires_at)
        return consent

    def _expire(self, db: Session, consent: Consent, reason: str) -> None:
        consent.status = ConsentStatus.EXPIRED.value
        consent.failure_reason = reason
        db.commit()
        logger.warning("Consent %s expired: %s", consent.id, reason)

    def refresh_token(
        self, db: Session, consent: Consent, now: Optional[datetime] = None
    ) -> Consent:
        """Exchange the refresh token for a new access token.

        Refreshes for the same consent are serialized; a caller that waited
        on the lock re-reads the consent and skips the exchange when another
        worker already refreshed it.

        Raises:
            ConsentExpiredError: if the consent is not AUTHORIZED, has no
                refresh token, or the institution rejected the refresh (the
                consent is marked EXPIRED first).
            ExternalApiError: on transient failures; the consent is unchanged.
        """
        with self._lock_for(consent.id):
            db.refresh(consent)
            now = self._now(now)
            if consent.status != ConsentStatus.AUTHORIZED.value or consent.revoked_at is not None:
                raise ConsentExpiredError(consent.id)
            if not self.needs_refresh(consent, now):
                return consent

            refresh_token = self.cipher.decrypt(consent.refresh_token)
            if not refresh_token:
                self._expire(db, consent, "No refresh token available")
                raise ConsentExpiredError(consent.id, f"Consent {consent.id} has no refresh token")

            institution = self.registry.get(db, consent.institution_id)
            try:
                token = self.oauth_client.refresh_access_token(institution, refresh_token)
            except ExternalApiError as e:
                if e.retriable:
                    logger.warning("Transient failure refreshing consent %s: %s", consent.id, e)
                    raise
                self._expire(db, consent, f"Token refresh rejected: {e}")
                raise ConsentExpiredError(consent.id, str(e)) from e

            self._store_token(consent, token, now)
            consent.failure_reason = None
            db.commit()
            logger.info("Refreshed token for consent %s (expires %s)", consent.id, consent.expires_at)
            return consent

    def get_valid_access_token(
        self, db: Session, consent: Consent, now: Optional[datetime] = None
    ) -> str:
        """Return a usable plaintext access token, refreshing first if due.

        Raises:
            ConsentExpiredError: if the consent cannot supply a valid token.
            ExternalApiError: on transient refresh failures.
        """
        now = self._now(now)
        if consent.status != ConsentStatus.AUTHORIZED.value or consent.revoked_at is not None:
            raise ConsentExpiredError(consent.id)
        if self.needs_refresh(consent, now):
            self.refresh_token(db, consent, now)
        if not consent.is_active(now):
            raise ConsentExpiredError(consent.id)
        token = self.cipher.decrypt(consent.access_token)
        if not token:
            raise ConsentExpiredError(consent.id, f"Consent {consent.id} has no access token")
        return token

    def revoke(self, db: Session, consent: Consent, now: Optional[datetime] = None) -> Consent:
        """Revoke the consent locally and (best effort) at the institution.

        Irreversible. Revoking an already-revoked consent returns it unchanged.
        """
        if consent.status == ConsentStatus.REVOKED.value:
            return consent
        now = self._now(now)

        access_token = self.cipher.decrypt(consent.access_token) if consent.access_token else None
        if access_token:
            institution = self.registry.get(db, consent.institution_id)
            try:
                self.oauth_client.revoke_token(institution, access_token, "access_token")
            except ExternalApiError as e:
                logger.warning("Remote revocation failed for consent %s: %s", consent.id, e)

        consent.status = ConsentStatus.REVOKED.value
        consent.access_token = None
        consent.refresh_token = None
        consent.state_token = None
        consent.revoked_at = now
        db.commit()
        logger.info("Revoked consent %s", consent.id)
        return consent

    def refresh_expiring_tokens(
        self, db: Session, now: Optional[datetime] = None
    ) -> TokenSweepResult:
        """Refresh every AUTHORIZED consent that has entered its refresh window."""
        now = self._now(now)
        result = TokenSweepResult()
        candidates = (
            db.query(Consent)
            .filter(
                Consent.status == ConsentStatus.AUTHORIZED.value,
                Consent.revoked_at.is_(None),
                Consent.expires_at.isnot(None),
                Consent.expires_at <= now + self._refresh_window,
            )
            .all()
        )
        for consent in candidates:
            try:
                self.refresh_token(db, consent, now)
                result.refreshed.append(consent.id)
            except ConsentExpiredError:
                result.expired.append(consent.id)
            except ExternalApiError:
                result.failed.append(consent.id)

        if candidates:
            logger.info(
                "Token sweep: %d refreshed, %d expired, %d failed",
                len(result.refreshed), len(result.expired), len(result.failed),
            )
        return result

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_consent(self, db: Session, consent_id: str, user_id: Optional[str] = None) -> Consent:
        """Look up a consent by ID, optionally scoped to its owner."""
        query = db.query(Consent).filter(Consent.id == consent_id)
        if user_id is not None:
            query = query.filter(Consent.user_id == user_id)
        consent = query.first()
        if consent is None:
            raise NotFoundError("Consent", consent_id)
        return consent

    def list_consents(
        self, db: Session, user_id: str, status: Optional[ConsentStatus] = None
    ) -> list[Consent]:
        query = db.query(Consent).filter(Consent.user_id == user_id)
        if status is not None:
            query = query.filter(Consent.status == ConsentStatus(status).value)
        return query.order_by(Consent.created_at.desc()).all()

"""Account sync orchestrator - per-account sync state machine.

Each connected account moves PENDING -> SYNCING -> SUCCESS | FAILED and back
to SYNCING on its next scheduled sync. DISABLED is only entered or left
through ``disable_account`` / ``enable_account``; repeated failures never
disable an account on their own.

Entering SYNCING is a compare-and-set on the account row, so at most one
sync is in flight per account no matter how many workers or processes
trigger it. Retries happen inside ``execute`` and are invisible outside
the single SYNCING span; exactly one AccountSyncLog row is written per
logical sync.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ExternalApiError
from integrations.open_finance_protocol import ExternalAPIClient
from models import (
    AccountSyncLog,
    ConnectedAccount,
    Consent,
    Institution,
    SyncOutcome,
    SyncStatus,
    SyncType,
)
from models.utils import as_naive_utc, utc_now
from services.consent_manager import ConsentManager
from services.exceptions import (
    AlreadySyncingError,
    ConsentExpiredError,
    NotFoundError,
    NotSyncableError,
)
from services.transaction_ingestion import TransactionIngestionMapper
from services.validation import raise_if_invalid, validate_sync_request

logger = logging.getLogger(__name__)

# States from which a sync may start
_STARTABLE = (SyncStatus.PENDING.value, SyncStatus.SUCCESS.value, SyncStatus.FAILED.value)
# Wall-clock allowance per attempt on top of the retry delay, used to
# detect syncs orphaned by a crashed worker
ATTEMPT_ALLOWANCE = timedelta(minutes=2)


@dataclass
class SyncHandle:
    """Returned by trigger_sync; identifies the in-flight operation."""

    account_id: str
    user_id: str
    sync_type: SyncType
    started_at: datetime


@dataclass
class SyncResult:
    account_id: str
    sync_type: SyncType
    outcome: SyncOutcome
    records_imported: int = 0
    error_message: Optional[str] = None
    attempts: int = 0
    log_id: Optional[str] = None


@dataclass
class _AttemptResult:
    records_imported: int = 0
    unmapped: int = 0
    first_unmapped_error: Optional[str] = None


class AccountSyncOrchestrator:
    """Drives balance and transaction syncs for connected accounts."""

    def __init__(
        self,
        api_client: Optional[ExternalAPIClient] = None,
        consent_manager: Optional[ConsentManager] = None,
        mapper: Optional[TransactionIngestionMapper] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        max_retry_attempts: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        balance_interval_minutes: Optional[int] = None,
        transaction_interval_hours: Optional[int] = None,
        lookback_days: Optional[int] = None,
    ):
        """Initialize with optional collaborators for dependency injection.

        Args:
            api_client: Account information client. Defaults to the httpx
                OpenFinanceClient on first use.
            consent_manager: Supplies valid access tokens.
            mapper: Transaction ingestion mapper.
            clock: Returns the current naive-UTC time.
            sleep: Called with seconds between retry attempts.
            max_retry_attempts: Total attempts per logical sync.
            retry_delay_ms: Fixed delay between attempts.
        """
        self._api_client = api_client
        self._clock = clock
        self._sleep = sleep
        self.consent_manager = consent_manager or ConsentManager(clock=clock)
        self.mapper = mapper or TransactionIngestionMapper(clock=clock)
        self.max_retry_attempts = (
            max_retry_attempts if max_retry_attempts is not None else settings.MAX_RETRY_ATTEMPTS
        )
        if self.max_retry_attempts < 1:
            raise ValueError(f"max_retry_attempts must be >= 1, got {self.max_retry_attempts}")
        self.retry_delay_ms = (
            retry_delay_ms if retry_delay_ms is not None else settings.RETRY_DELAY_MS
        )
        self.balance_interval = timedelta(
            minutes=balance_interval_minutes
            if balance_interval_minutes is not None
            else settings.BALANCE_SYNC_INTERVAL_MINUTES
        )
        self.transaction_interval = timedelta(
            hours=transaction_interval_hours
            if transaction_interval_hours is not None
            else settings.TRANSACTION_SYNC_INTERVAL_HOURS
        )
        self.lookback = timedelta(
            days=lookback_days if lookback_days is not None else settings.TRANSACTION_LOOKBACK_DAYS
        )

    @property
    def api_client(self) -> ExternalAPIClient:
        if self._api_client is None:
            from integrations.open_finance_client import OpenFinanceClient

            self._api_client = OpenFinanceClient()
        return self._api_client

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_naive_utc(now) if now is not None else self._clock()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_account(
        self, db: Session, account_id: str, user_id: Optional[str] = None
    ) -> ConnectedAccount:
        query = db.query(ConnectedAccount).filter(ConnectedAccount.id == account_id)
        if user_id is not None:
            query = query.filter(ConnectedAccount.user_id == user_id)
        account = query.first()
        if account is None:
            raise NotFoundError("ConnectedAccount", account_id)
        return account

    @staticmethod
    def get_consent_for(db: Session, account: ConnectedAccount) -> Optional[Consent]:
        return db.query(Consent).filter(Consent.id == account.consent_id).first()

    def is_syncable(
        self, db: Session, account: ConnectedAccount, now: Optional[datetime] = None
    ) -> bool:
        return account.is_syncable(self.get_consent_for(db, account), self._now(now))

    def list_accounts(
        self, db: Session, user_id: str, consent_id: Optional[str] = None
    ) -> list[ConnectedAccount]:
        query = db.query(ConnectedAccount).filter(ConnectedAccount.user_id == user_id)
        if consent_id is not None:
            query = query.filter(ConnectedAccount.consent_id == consent_id)
        return query.order_by(ConnectedAccount.created_at).all()

    def list_sync_logs(
        self, db: Session, user_id: str, account_id: str, limit: int = 50
    ) -> list[AccountSyncLog]:
        """Sync history for one of the user's accounts, newest first."""
        account = self.get_account(db, account_id, user_id)
        return (
            db.query(AccountSyncLog)
            .filter(AccountSyncLog.account_id == account.id)
            .order_by(AccountSyncLog.synced_at.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def is_due(
        self, account: ConnectedAccount, sync_type: SyncType, now: Optional[datetime] = None
    ) -> bool:
        """Whether ``sync_type`` is due for ``account`` at ``now``.

        Balance syncs are due every BALANCE_SYNC_INTERVAL_MINUTES after the
        last successful sync; transaction syncs every
        TRANSACTION_SYNC_INTERVAL_HOURS after the last transaction sync. A
        FULL sync is due when either part is. Accounts that are DISABLED or
        already SYNCING are never due.
        """
        sync_type = SyncType(sync_type)
        if account.sync_status in (SyncStatus.DISABLED.value, SyncStatus.SYNCING.value):
            return False
        now = self._now(now)

        if sync_type == SyncType.FULL:
            return self.is_due(account, SyncType.BALANCE, now) or self.is_due(
                account, SyncType.TRANSACTIONS, now
            )
        if sync_type == SyncType.BALANCE:
            last, interval = account.last_synced_at, self.balance_interval
        else:
            last, interval = account.transactions_synced_at, self.transaction_interval
        if last is None:
            return True
        return now - as_naive_utc(last) >= interval

    def due_sync_type(
        self, account: ConnectedAccount, now: Optional[datetime] = None
    ) -> Optional[SyncType]:
        """The sync type to run now: FULL if both parts are due, else the one due."""
        balance_due = self.is_due(account, SyncType.BALANCE, now)
        transactions_due = self.is_due(account, SyncType.TRANSACTIONS, now)
        if balance_due and transactions_due:
            return SyncType.FULL
        if balance_due:
            return SyncType.BALANCE
        if transactions_due:
            return SyncType.TRANSACTIONS
        return None

    def find_due_accounts(
        self, db: Session, now: Optional[datetime] = None
    ) -> list[tuple[ConnectedAccount, SyncType]]:
        """Syncable accounts with something due, paired with the sync type to run."""
        now = self._now(now)
        accounts = (
            db.query(ConnectedAccount)
            .filter(ConnectedAccount.sync_status.in_(_STARTABLE))
            .all()
        )
        consent_ids = {a.consent_id for a in accounts}
        consents = {
            c.id: c for c in db.query(Consent).filter(Consent.id.in_(consent_ids)).all()
        } if consent_ids else {}

        due = []
        for account in accounts:
            if not account.is_syncable(consents.get(account.consent_id), now):
                continue
            sync_type = self.due_sync_type(account, now)
            if sync_type is not None:
                due.append((account, sync_type))
        return due

    # ------------------------------------------------------------------
    # Sync lifecycle
    # ------------------------------------------------------------------

    def trigger_sync(
        self,
        db: Session,
        user_id: str,
        account_id: str,
        sync_type: SyncType,
        now: Optional[datetime] = None,
    ) -> SyncHandle:
        """Move the account into SYNCING and return a handle for execute().

        Raises:
            InvalidRequestError: if the request fails validation.
            NotFoundError: if the account does not belong to ``user_id``.
            NotSyncableError: if the account is DISABLED or its consent is
                not active.
            AlreadySyncingError: if a sync is already in flight.
        """
        raise_if_invalid(validate_sync_request(user_id, account_id, sync_type))
        sync_type = SyncType(sync_type)
        now = self._now(now)
        account = self.get_account(db, account_id, user_id)

        if account.sync_status == SyncStatus.SYNCING.value:
            raise AlreadySyncingError(account.id)
        if not account.is_syncable(self.get_consent_for(db, account), now):
            raise NotSyncableError(account.id)

        claimed = db.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account.id,
                ConnectedAccount.sync_status.in_(_STARTABLE),
            )
            .values(
                sync_status=SyncStatus.SYNCING.value,
                sync_started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            db.refresh(account)
            if account.sync_status == SyncStatus.DISABLED.value:
                raise NotSyncableError(account.id, "account was disabled")
            raise AlreadySyncingError(account.id)
        db.commit()
        db.refresh(account)

        logger.info("Account %s: %s sync started", account.id, sync_type.value)
        return SyncHandle(
            account_id=account.id, user_id=user_id, sync_type=sync_type, started_at=now
        )

    def _attempt(
        self,
        db: Session,
        account: ConnectedAccount,
        institution: Institution,
        consent: Consent,
        sync_type: SyncType,
        now: datetime,
    ) -> _AttemptResult:
        """One try at fetching and storing data. Nothing is committed here."""
        result = _AttemptResult()
        token = self.consent_manager.get_valid_access_token(db, consent, now)

        if sync_type.includes_balance:
            balance = self.api_client.fetch_balance(institution, account, token)
            account.balance = balance.amount
            if balance.currency:
                account.currency = balance.currency

        if sync_type.includes_transactions:
            since = as_naive_utc(account.transactions_synced_at) or (now - self.lookback)
            remote = self.api_client.fetch_transactions(institution, account, token, since)
            ingestion = self.mapper.ingest(db, account.user_id, account, institution, remote, now)
            result.records_imported = ingestion.imported
            result.unmapped = len(ingestion.failures)
            if ingestion.failures:
                result.first_unmapped_error = str(ingestion.failures[0])
        return result

    def _finish(
        self,
        db: Session,
        account: ConnectedAccount,
        started_at: datetime,
        sync_type: SyncType,
        outcome: SyncOutcome,
        now: datetime,
        records_imported: int = 0,
        error_message: Optional[str] = None,
    ) -> Optional[AccountSyncLog]:
        """Leave SYNCING and append the single log row for this sync.

        Closing the sync is a compare-and-set on the SYNCING run that began at
        ``started_at``. If that run was already closed elsewhere (stale-sync
        recovery), this outcome is discarded along with its uncommitted
        writes and ``None`` is returned.
        """
        succeeded = outcome != SyncOutcome.FAILED
        values = {
            "sync_status": SyncStatus.SUCCESS.value if succeeded else SyncStatus.FAILED.value,
            "sync_started_at": None,
            "last_sync_error": None if succeeded else error_message,
            "updated_at": now,
        }
        if succeeded:
            values["last_synced_at"] = now
            if sync_type.includes_transactions:
                values["transactions_synced_at"] = now

        closed = db.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account.id,
                ConnectedAccount.sync_status == SyncStatus.SYNCING.value,
                ConnectedAccount.sync_started_at == started_at,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if closed.rowcount != 1:
            db.rollback()
            logger.warning(
                "Account %s: %s sync started at %s was closed elsewhere; discarding %s outcome",
                account.id, sync_type.value, started_at, outcome.value,
            )
            return None

        log = AccountSyncLog(
            account_id=account.id,
            sync_type=sync_type.value,
            status=outcome.value,
            records_imported=records_imported,
            error_message=error_message,
            synced_at=now,
        )
        db.add(log)
        db.commit()
        return log

    def execute(self, db: Session, handle: SyncHandle) -> SyncResult:
        """Run the sync started by trigger_sync, retrying transient failures.

        Transient API errors (network, 429, 5xx) are retried up to
        ``max_retry_attempts`` total attempts with ``retry_delay_ms`` between
        them. Non-retriable API errors fail immediately. Either way the
        account ends FAILED with one FAILED log row and stays syncable.

        Raises:
            ConsentExpiredError: after recording the FAILED outcome, since
                the caller has to send the user back through consent.
        """
        account = self.get_account(db, handle.account_id)
        sync_type = handle.sync_type
        if (
            account.sync_status != SyncStatus.SYNCING.value
            or as_naive_utc(account.sync_started_at) != handle.started_at
        ):
            raise NotSyncableError(account.id, "no sync in progress for this handle")

        institution = db.query(Institution).filter(Institution.id == account.institution_id).one()
        consent = self.get_consent_for(db, account)
        delay_seconds = self.retry_delay_ms / 1000.0

        attempt = 0
        while True:
            attempt += 1
            now = self._clock()
            try:
                result = self._attempt(db, account, institution, consent, sync_type, now)
            except ConsentExpiredError as e:
                db.rollback()
                self._finish(
                    db, account, handle.started_at, sync_type, SyncOutcome.FAILED,
                    self._clock(), error_message=str(e),
                )
                logger.warning("Account %s: sync blocked, %s", account.id, e)
                raise
            except ExternalApiError as e:
                db.rollback()
                if e.retriable and attempt < self.max_retry_attempts:
                    logger.warning(
                        "Account %s: attempt %d/%d failed (%s), retrying in %.1fs",
                        account.id, attempt, self.max_retry_attempts, e, delay_seconds,
                    )
                    self._sleep(delay_seconds)
                    continue
                log = self._finish(
                    db, account, handle.started_at, sync_type, SyncOutcome.FAILED,
                    self._clock(), error_message=str(e),
                )
                logger.error(
                    "Account %s: %s sync failed after %d attempt(s): %s",
                    account.id, sync_type.value, attempt, e,
                )
                return SyncResult(
                    account_id=account.id,
                    sync_type=sync_type,
                    outcome=SyncOutcome.FAILED,
                    error_message=str(e),
                    attempts=attempt,
                    log_id=log.id if log else None,
                )
            except Exception as e:
                db.rollback()
                logger.error("Account %s: unexpected sync error", account.id, exc_info=True)
                message = f"Unexpected error: {type(e).__name__}"
                log = self._finish(
                    db, account, handle.started_at, sync_type, SyncOutcome.FAILED,
                    self._clock(), error_message=message,
                )
                return SyncResult(
                    account_id=account.id,
                    sync_type=sync_type,
                    outcome=SyncOutcome.FAILED,
                    error_message=message,
                    attempts=attempt,
                    log_id=log.id if log else None,
                )
            break

        outcome = SyncOutcome.PARTIAL if result.unmapped else SyncOutcome.SUCCESS
        error_message = None
        if result.unmapped:
            error_message = (
                f"{result.unmapped} record(s) could not be mapped; first: "
                f"{result.first_unmapped_error}"
            )
        log = self._finish(
            db, account, handle.started_at, sync_type, outcome, now,
            records_imported=result.records_imported,
            error_message=error_message,
        )
        if log is None:
            return SyncResult(
                account_id=account.id,
                sync_type=sync_type,
                outcome=SyncOutcome.FAILED,
                error_message="Sync was closed by stale-sync recovery before it finished",
                attempts=attempt,
            )
        logger.info(
            "Account %s: %s sync %s, %d records imported",
            account.id, sync_type.value, outcome.value, result.records_imported,
        )
        return SyncResult(
            account_id=account.id,
            sync_type=sync_type,
            outcome=outcome,
            records_imported=result.records_imported,
            error_message=error_message,
            attempts=attempt,
            log_id=log.id,
        )

    def sync_account(
        self,
        db: Session,
        user_id: str,
        account_id: str,
        sync_type: SyncType,
    ) -> SyncResult:
        """trigger_sync followed by execute, for synchronous callers."""
        handle = self.trigger_sync(db, user_id, account_id, sync_type)
        return self.execute(db, handle)

    def recover_stale_syncs(self, db: Session, now: Optional[datetime] = None) -> list[str]:
        """Fail syncs left in SYNCING past their retry budget (e.g. a worker died).

        Returns the IDs of the accounts that were failed.
        """
        now = self._now(now)
        budget = self.max_retry_attempts * (
            timedelta(milliseconds=self.retry_delay_ms) + ATTEMPT_ALLOWANCE
        )
        stale = (
            db.query(ConnectedAccount)
            .filter(
                ConnectedAccount.sync_status == SyncStatus.SYNCING.value,
                ConnectedAccount.sync_started_at <= now - budget,
            )
            .all()
        )
        recovered = []
        for account in stale:
            account_id = account.id
            closed = self._finish(
                db, account, as_naive_utc(account.sync_started_at), SyncType.FULL,
                SyncOutcome.FAILED, now, error_message="Sync exceeded its time budget",
            )
            if closed is None:
                continue
            recovered.append(account_id)
            logger.warning("Account %s: stale sync marked FAILED", account_id)
        return recovered

    # ------------------------------------------------------------------
    # Account linking and administrative actions
    # ------------------------------------------------------------------

    def link_accounts(
        self, db: Session, user_id: str, consent_id: str, now: Optional[datetime] = None
    ) -> list[ConnectedAccount]:
        """Fetch the consent's remote accounts and upsert ConnectedAccounts.

        New accounts start PENDING. Accounts already linked under an older
        consent of the same user move to this consent.

        Raises:
            NotFoundError: if the consent does not belong to ``user_id``.
            ConsentExpiredError: if the consent cannot supply a token.
            ExternalApiError: if the account list cannot be fetched.
        """
        now = self._now(now)
        consent = self.consent_manager.get_consent(db, consent_id, user_id)
        institution = db.query(Institution).filter(Institution.id == consent.institution_id).one()
        token = self.consent_manager.get_valid_access_token(db, consent, now)
        remote_accounts = self.api_client.fetch_accounts(institution, token)

        linked = []
        for remote in remote_accounts:
            account = (
                db.query(ConnectedAccount)
                .filter(
                    ConnectedAccount.institution_id == institution.id,
                    ConnectedAccount.external_account_id == remote.account_id,
                )
                .first()
            )
            if account is not None and account.user_id != user_id:
                logger.warning(
                    "Account %s at %s is linked to another user; skipping",
                    remote.account_id, institution.code,
                )
                continue
            if account is None:
                account = ConnectedAccount(
                    user_id=user_id,
                    institution_id=institution.id,
                    external_account_id=remote.account_id,
                    sync_status=SyncStatus.PENDING.value,
                )
                db.add(account)
            account.consent_id = consent.id
            account.account_type = (remote.account_type or "OTHER").upper()
            account.account_number = remote.account_number
            account.branch = remote.branch
            account.account_holder_name = remote.account_holder_name
            account.currency = remote.currency or "BRL"
            linked.append(account)

        db.commit()
        logger.info(
            "Linked %d account(s) for user %s under consent %s",
            len(linked), user_id, consent.id,
        )
        return linked

    def disable_account(self, db: Session, user_id: str, account_id: str) -> ConnectedAccount:
        """Administratively disable an account. Not allowed mid-sync.

        Raises:
            AlreadySyncingError: if a sync is in flight.
        """
        account = self.get_account(db, account_id, user_id)
        if account.sync_status == SyncStatus.DISABLED.value:
            return account
        disabled = db.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account.id,
                ConnectedAccount.sync_status.in_(_STARTABLE),
            )
            .values(sync_status=SyncStatus.DISABLED.value, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        if disabled.rowcount != 1:
            db.rollback()
            raise AlreadySyncingError(account.id)
        db.commit()
        db.refresh(account)
        logger.info("Account %s disabled", account.id)
        return account

    def enable_account(self, db: Session, user_id: str, account_id: str) -> ConnectedAccount:
        """Re-enable a DISABLED account; it returns to PENDING."""
        account = self.get_account(db, account_id, user_id)
        if account.sync_status != SyncStatus.DISABLED.value:
            return account
        account.sync_status = SyncStatus.PENDING.value
        account.last_sync_error = None
        db.commit()
        logger.info("Account %s re-enabled", account.id)
        return account

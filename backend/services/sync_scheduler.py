"""Sync scheduler - runs due syncs on a worker pool and the periodic jobs.

The orchestrator only answers "is this due?" and performs one sync; this
module is the periodic trigger around it. Every worker opens its own
session, and a failure on one account is logged and never stops the loop.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config import settings
from database import get_session_local
from integrations.exceptions import ExternalApiError
from models import SyncType
from models.utils import utc_now
from services.account_sync_orchestrator import AccountSyncOrchestrator, SyncResult
from services.exceptions import AlreadySyncingError, ConsentExpiredError, NotSyncableError
from services.institution_registry import InstitutionRegistry

logger = logging.getLogger(__name__)

TOKEN_SWEEP_INTERVAL = timedelta(hours=1)


@dataclass
class _DueSync:
    account_id: str
    user_id: str
    sync_type: SyncType


class SyncScheduler:
    """Periodic driver for syncs, token refresh and registry refresh."""

    def __init__(
        self,
        orchestrator: Optional[AccountSyncOrchestrator] = None,
        registry: Optional[InstitutionRegistry] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        worker_count: Optional[int] = None,
        poll_interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.orchestrator = orchestrator or AccountSyncOrchestrator(clock=clock)
        self.registry = registry or self.orchestrator.consent_manager.registry
        self._session_factory = session_factory
        self._worker_count = worker_count or settings.SYNC_WORKER_COUNT
        self._poll_interval = poll_interval_seconds
        self._clock = clock

        self._last_token_sweep: Optional[datetime] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    def _new_session(self) -> Session:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _run_one(self, due: _DueSync) -> Optional[SyncResult]:
        db = self._new_session()
        try:
            handle = self.orchestrator.trigger_sync(db, due.user_id, due.account_id, due.sync_type)
            return self.orchestrator.execute(db, handle)
        except (AlreadySyncingError, NotSyncableError) as e:
            logger.debug("Skipping scheduled sync: %s", e)
        except ConsentExpiredError as e:
            logger.warning("Scheduled sync for account %s blocked: %s", due.account_id, e)
        except Exception:
            logger.error("Scheduled sync for account %s crashed", due.account_id, exc_info=True)
        finally:
            db.close()
        return None

    def run_due_syncs(self, now: Optional[datetime] = None) -> list[SyncResult]:
        """Trigger every due sync and wait for them to finish.

        Returns:
            Results of the syncs that ran (skipped or blocked ones are omitted).
        """
        db = self._new_session()
        try:
            self.orchestrator.recover_stale_syncs(db, now)
            due = [
                _DueSync(account.id, account.user_id, sync_type)
                for account, sync_type in self.orchestrator.find_due_accounts(db, now)
            ]
        finally:
            db.close()

        if not due:
            return []
        logger.info("Running %d due sync(s) on %d worker(s)", len(due), self._worker_count)

        if self._executor is not None:
            results = list(self._executor.map(self._run_one, due))
        else:
            with ThreadPoolExecutor(max_workers=self._worker_count) as pool:
                results = list(pool.map(self._run_one, due))
        return [r for r in results if r is not None]

    def refresh_tokens(self, now: Optional[datetime] = None) -> None:
        db = self._new_session()
        try:
            self.orchestrator.consent_manager.refresh_expiring_tokens(db, now)
        except Exception:
            logger.error("Token refresh sweep failed", exc_info=True)
        finally:
            db.close()

    def refresh_registry_if_due(self, now: Optional[datetime] = None) -> bool:
        """Refresh the institution registry when auto-refresh is on and it is stale."""
        if not settings.INSTITUTION_REGISTRY_AUTO_REFRESH:
            return False
        db = self._new_session()
        try:
            if not self.registry.is_refresh_due(db, now):
                return False
            self.registry.refresh(db, now)
            return True
        except ExternalApiError as e:
            logger.warning("Institution registry refresh failed: %s", e)
            return False
        finally:
            db.close()

    def run_once(self, now: Optional[datetime] = None) -> list[SyncResult]:
        """One scheduler tick: registry, token sweep (hourly), then due syncs."""
        now = now or self._clock()
        self.refresh_registry_if_due(now)
        if self._last_token_sweep is None or now - self._last_token_sweep >= TOKEN_SWEEP_INTERVAL:
            self.refresh_tokens(now)
            self._last_token_sweep = now
        if not settings.SYNC_ENABLED:
            return []
        return self.run_due_syncs(now)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.error("Scheduler tick failed", exc_info=True)
            self._stop_event.wait(self._poll_interval)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self._worker_count, thread_name_prefix="sync-worker"
        )
        self._thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started (%d workers)", self._worker_count)

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("Sync scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

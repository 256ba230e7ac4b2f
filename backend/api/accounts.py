"""Connected account and sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_current_user_id, get_orchestrator, internal_error, to_http_exception
from database import get_db
from integrations.exceptions import OpenFinanceError
from schemas import (
    AccountSyncLogResponse,
    ConnectedAccountResponse,
    LinkAccountsRequest,
    SyncRequest,
    SyncResultResponse,
)
from services.account_sync_orchestrator import AccountSyncOrchestrator
from services.exceptions import OpenFinanceServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/open-finance/accounts", tags=["accounts"])


@router.post("/link", response_model=list[ConnectedAccountResponse])
def link_accounts(
    body: LinkAccountsRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    """Discover the accounts an authorized consent grants and link them."""
    try:
        return orchestrator.link_accounts(db, user_id, body.consent_id)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("linking accounts")


@router.get("", response_model=list[ConnectedAccountResponse])
def list_accounts(
    consent_id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_accounts(db, user_id, consent_id)


@router.get("/{account_id}", response_model=ConnectedAccountResponse)
def get_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.get_account(db, account_id, user_id)
    except OpenFinanceServiceError as e:
        raise to_http_exception(e) from e


@router.post("/{account_id}/sync", response_model=SyncResultResponse)
def sync_account(
    account_id: str,
    body: SyncRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    """Run a sync now and return its outcome.

    Raises:
        HTTPException:
            - 409 Conflict: account is already syncing or not syncable
            - 401 Unauthorized: the consent has expired; re-consent needed
    """
    sync_type = (body or SyncRequest()).sync_type
    try:
        return orchestrator.sync_account(db, user_id, account_id, sync_type)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("syncing account")


@router.get("/{account_id}/sync-logs", response_model=list[AccountSyncLogResponse])
def list_sync_logs(
    account_id: str,
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.list_sync_logs(db, user_id, account_id, limit)
    except OpenFinanceServiceError as e:
        raise to_http_exception(e) from e


@router.post("/{account_id}/disable", response_model=ConnectedAccountResponse)
def disable_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.disable_account(db, user_id, account_id)
    except OpenFinanceServiceError as e:
        raise to_http_exception(e) from e


@router.post("/{account_id}/enable", response_model=ConnectedAccountResponse)
def enable_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: AccountSyncOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.enable_account(db, user_id, account_id)
    except OpenFinanceServiceError as e:
        raise to_http_exception(e) from e

"""Pydantic schemas for sync requests, results and logs."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from models import SyncOutcome, SyncType


class SyncRequest(BaseModel):
    """Schema for a manual sync trigger."""

    sync_type: SyncType = SyncType.FULL


class SyncResultResponse(BaseModel):
    account_id: str
    sync_type: SyncType
    outcome: SyncOutcome
    records_imported: int
    error_message: Optional[str] = None
    attempts: int
    log_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AccountSyncLogResponse(BaseModel):
    """Schema for AccountSyncLog API response."""

    id: str
    account_id: str
    sync_type: str
    status: str
    records_imported: int
    error_message: Optional[str] = None
    synced_at: datetime

    model_config = ConfigDict(from_attributes=True)

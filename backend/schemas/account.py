"""Pydantic schemas for connected accounts."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ConnectedAccountResponse(BaseModel):
    """Schema for ConnectedAccount API response."""

    id: str
    user_id: str
    consent_id: str
    institution_id: str
    external_account_id: str
    account_type: str
    account_number: Optional[str] = None
    branch: Optional[str] = None
    account_holder_name: Optional[str] = None
    balance: Optional[Decimal] = None
    currency: str
    sync_status: str
    sync_started_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    transactions_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LinkAccountsRequest(BaseModel):
    consent_id: str

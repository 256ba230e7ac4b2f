"""Pydantic schemas for API request/response validation."""

from schemas.account import ConnectedAccountResponse, LinkAccountsRequest
from schemas.consent import (
    ConsentCallback,
    ConsentCreate,
    ConsentInitiationResponse,
    ConsentResponse,
)
from schemas.institution import InstitutionResponse, RegistryRefreshResponse
from schemas.sync import AccountSyncLogResponse, SyncRequest, SyncResultResponse

__all__ = [
    "AccountSyncLogResponse",
    "ConnectedAccountResponse",
    "ConsentCallback",
    "ConsentCreate",
    "ConsentInitiationResponse",
    "ConsentResponse",
    "InstitutionResponse",
    "LinkAccountsRequest",
    "RegistryRefreshResponse",
    "SyncRequest",
    "SyncResultResponse",
]

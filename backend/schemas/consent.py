"""Pydantic schemas for consent requests and responses."""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ConsentCreate(BaseModel):
    """Schema for initiating a consent. Omit scopes to use the configured defaults."""

    institution_code: str
    scopes: Optional[list[str]] = None


class ConsentResponse(BaseModel):
    """Schema for Consent API response. Tokens are never included."""

    id: str
    user_id: str
    institution_id: str
    status: str
    scopes: list[str] = Field(validation_alias=AliasChoices("scope_list", "scopes"))
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConsentInitiationResponse(BaseModel):
    consent: ConsentResponse
    authorization_url: str
    state: str


class ConsentCallback(BaseModel):
    """Query parameters the institution redirects back with."""

    consent_id: str
    code: str
    state: Optional[str] = None

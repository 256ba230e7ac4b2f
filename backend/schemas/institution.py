"""Pydantic schemas for institutions."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class InstitutionResponse(BaseModel):
    """Schema for Institution API response. OAuth endpoints are not exposed."""

    id: str
    code: str
    name: str
    api_base_url: str
    certificate_required: bool
    is_active: bool
    last_refreshed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RegistryRefreshResponse(BaseModel):
    created: list[str]
    updated: list[str]
    deactivated: list[str]

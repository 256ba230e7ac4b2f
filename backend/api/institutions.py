"""Institution registry API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_registry, internal_error, to_http_exception
from database import get_db
from integrations.exceptions import OpenFinanceError
from schemas import InstitutionResponse, RegistryRefreshResponse
from services.exceptions import OpenFinanceServiceError
from services.institution_registry import InstitutionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/open-finance/institutions", tags=["institutions"])


@router.get("", response_model=list[InstitutionResponse])
def list_institutions(
    db: Session = Depends(get_db),
    registry: InstitutionRegistry = Depends(get_registry),
):
    """List active institutions a user can connect to."""
    return registry.list_active(db)


@router.get("/{code}", response_model=InstitutionResponse)
def get_institution(
    code: str,
    db: Session = Depends(get_db),
    registry: InstitutionRegistry = Depends(get_registry),
):
    institution = registry.get_by_code(db, code)
    if institution is None:
        raise HTTPException(status_code=404, detail=f"Institution not found: {code}")
    return institution


@router.post("/refresh", response_model=RegistryRefreshResponse)
def refresh_institutions(
    db: Session = Depends(get_db),
    registry: InstitutionRegistry = Depends(get_registry),
):
    """Pull the participant directory now, regardless of the refresh schedule."""
    try:
        result = registry.refresh(db)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("refreshing institutions")
    return RegistryRefreshResponse(
        created=result.created, updated=result.updated, deactivated=result.deactivated
    )

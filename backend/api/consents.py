"""Consent API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_consent_manager, get_current_user_id, internal_error, to_http_exception
from database import get_db
from integrations.exceptions import OpenFinanceError
from models import ConsentStatus
from schemas import ConsentCreate, ConsentInitiationResponse, ConsentResponse
from services.consent_manager import ConsentManager
from services.exceptions import OpenFinanceServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/open-finance/consents", tags=["consents"])


@router.post("", response_model=ConsentInitiationResponse, status_code=201)
def initiate_consent(
    body: ConsentCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    manager: ConsentManager = Depends(get_consent_manager),
):
    """Start the OAuth flow; the client redirects the user to authorization_url."""
    try:
        initiation = manager.initiate_consent(db, user_id, body.institution_code, body.scopes)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("initiating consent")
    return ConsentInitiationResponse(
        consent=ConsentResponse.model_validate(initiation.consent),
        authorization_url=initiation.authorization_url,
        state=initiation.state,
    )


@router.get("/callback", response_model=ConsentResponse)
def consent_callback(
    consent_id: str = Query(...),
    code: str = Query(...),
    state: str = Query(...),
    db: Session = Depends(get_db),
    manager: ConsentManager = Depends(get_consent_manager),
):
    """OAuth redirect target.

    Always returns the consent; a failed exchange shows up as status FAILED
    with failure_reason set.
    """
    try:
        return manager.handle_callback(db, consent_id, code, state)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("handling consent callback")


@router.get("", response_model=list[ConsentResponse])
def list_consents(
    status: ConsentStatus | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    manager: ConsentManager = Depends(get_consent_manager),
):
    return manager.list_consents(db, user_id, status)


@router.get("/{consent_id}", response_model=ConsentResponse)
def get_consent(
    consent_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    manager: ConsentManager = Depends(get_consent_manager),
):
    try:
        return manager.get_consent(db, consent_id, user_id)
    except OpenFinanceServiceError as e:
        raise to_http_exception(e) from e


@router.post("/{consent_id}/refresh", response_model=ConsentResponse)
def refresh_consent(
    consent_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    manager: ConsentManager = Depends(get_consent_manager),
):
    """Refresh the consent's access token if it is inside the refresh window."""
    try:
        consent = manager.get_consent(db, consent_id, user_id)
        return manager.refresh_token(db, consent)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("refreshing consent")


@router.post("/{consent_id}/revoke", response_model=ConsentResponse)
def revoke_consent(
    consent_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    manager: ConsentManager = Depends(get_consent_manager),
):
    """Revoke the consent. Irreversible; linked accounts stop syncing."""
    try:
        consent = manager.get_consent(db, consent_id, user_id)
        return manager.revoke(db, consent)
    except (OpenFinanceError, OpenFinanceServiceError) as e:
        raise to_http_exception(e) from e
    except Exception:
        raise internal_error("revoking consent")

"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import accounts, consents, institutions
from config import settings
from database import get_session_local
from integrations.exceptions import ConfigurationError, ExternalApiError
from logging_config import setup_logging
from services.institution_registry import InstitutionRegistry
from services.sync_scheduler import SyncScheduler
from services.validation import validate_settings

setup_logging()
logger = logging.getLogger(__name__)


def check_configuration(registry: InstitutionRegistry) -> None:
    """Validate the Open Finance configuration, raising on any issue."""
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        if settings.INSTITUTION_REGISTRY_AUTO_REFRESH and registry.is_refresh_due(db):
            try:
                registry.refresh(db)
            except ExternalApiError as e:
                logger.warning("Initial institution registry refresh failed: %s", e)
        certificates_required = registry.any_certificate_required(db)
    finally:
        db.close()

    issues = validate_settings(settings, certificates_required=certificates_required)
    for issue in issues:
        logger.error("Configuration: %s %s", issue.field, issue.message)
    if issues:
        raise ConfigurationError(
            f"Open Finance configuration is invalid ({len(issues)} issue(s))"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and start the sync scheduler."""
    scheduler = None
    if settings.OPEN_FINANCE_ENABLED:
        registry = InstitutionRegistry()
        check_configuration(registry)
        if settings.SYNC_ENABLED:
            scheduler = SyncScheduler(registry=registry)
            scheduler.start()
    else:
        logger.info("Open Finance disabled; skipping configuration check and scheduler")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(
    title="Open Finance Sync",
    description="Open Finance consent management and account synchronization",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(institutions.router)
app.include_router(consents.router)
app.include_router(accounts.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}

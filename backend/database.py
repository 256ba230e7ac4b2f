"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


@lru_cache
def get_engine():
    """Get or create the database engine (cached).

    SQLite connections are shared across the sync worker threads, so
    ``check_same_thread`` is disabled for SQLite URLs.
    """
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )
    logger.info("Database engine created for %s", database_url.split("://", 1)[0])
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Helpers such as ``TransactionIngestionMapper.ingest()`` only ``flush()``
    - Service entry points commit their own state transitions:
      - ``AccountSyncOrchestrator.trigger_sync()``: the SYNCING
        compare-and-set must be visible to other workers immediately
      - ``AccountSyncOrchestrator.execute()``: sync outcome and log entry
      - ``ConsentManager``: consent transitions around remote token calls
      - ``InstitutionRegistry.refresh()``: the whole directory upsert
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

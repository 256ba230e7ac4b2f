"""Centralized logging configuration."""

import logging

from config import settings

# Loggers held at WARNING unless LOG_HTTP_TRAFFIC is set
HTTP_LOGGERS = ("httpx", "httpcore", "urllib3")
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "keyring")


def setup_logging() -> None:
    """Configure logging for the application.

    Sync jobs run on a worker pool, so the thread name is part of every
    record. Institution HTTP traffic stays at WARNING unless
    ``LOG_HTTP_TRAFFIC`` is enabled.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )

    quiet = QUIET_LOGGERS if settings.LOG_HTTP_TRAFFIC else QUIET_LOGGERS + HTTP_LOGGERS
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    if settings.LOG_HTTP_TRAFFIC:
        for name in HTTP_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)

"""Institution registry - participant metadata refreshed from the directory."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import settings
from integrations.open_finance_protocol import InstitutionDirectory, InstitutionRecord
from models import Institution
from models.utils import as_naive_utc, utc_now
from services.exceptions import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class RegistryRefreshResult:
    """Counts of what one registry refresh changed."""

    created: list[str] = field(default_factory=list)  # Institution codes
    updated: list[str] = field(default_factory=list)
    deactivated: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated)


class InstitutionRegistry:
    """Holds Institution rows and keeps them in step with the directory.

    Institutions are only written here. Entries that disappear from the
    directory are deactivated rather than deleted so consents and accounts
    that reference them keep a valid foreign key.
    """

    def __init__(
        self,
        directory: Optional[InstitutionDirectory] = None,
        refresh_interval_hours: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._directory = directory
        self._refresh_interval = timedelta(
            hours=refresh_interval_hours or settings.INSTITUTION_REGISTRY_REFRESH_INTERVAL_HOURS
        )
        self._clock = clock

    @property
    def directory(self) -> InstitutionDirectory:
        if self._directory is None:
            from integrations.institution_directory import HttpInstitutionDirectory

            self._directory = HttpInstitutionDirectory()
        return self._directory

    @staticmethod
    def _resolve_url(url: str) -> str:
        """Resolve directory paths like "/bank/api" against the configured API root."""
        if url.startswith("/"):
            return settings.open_finance_base_url.rstrip("/") + url
        return url

    def _apply_record(self, institution: Institution, record: InstitutionRecord, now: datetime) -> None:
        institution.name = record.name
        institution.api_base_url = self._resolve_url(record.api_base_url)
        institution.authorization_url = self._resolve_url(record.authorization_url)
        institution.token_url = self._resolve_url(record.token_url)
        institution.revocation_url = (
            self._resolve_url(record.revocation_url) if record.revocation_url else None
        )
        institution.certificate_required = record.certificate_required
        institution.is_active = record.is_active
        institution.last_refreshed_at = now

    def refresh(self, db: Session, now: Optional[datetime] = None) -> RegistryRefreshResult:
        """Pull the directory and upsert every institution by code.

        Raises:
            ExternalApiError: if the directory cannot be fetched. Nothing is
                written in that case.
        """
        now = as_naive_utc(now) if now is not None else self._clock()
        records = self.directory.fetch_institutions()
        result = RegistryRefreshResult()

        existing = {inst.code: inst for inst in db.query(Institution).all()}
        seen: set[str] = set()
        for record in records:
            if record.code in seen:
                logger.warning("Duplicate institution code %s in directory; keeping first", record.code)
                continue
            seen.add(record.code)

            institution = existing.get(record.code)
            if institution is None:
                institution = Institution(code=record.code)
                db.add(institution)
                result.created.append(record.code)
            else:
                result.updated.append(record.code)
            self._apply_record(institution, record, now)

        for code, institution in existing.items():
            if code not in seen and institution.is_active:
                institution.is_active = False
                institution.last_refreshed_at = now
                result.deactivated.append(code)

        db.commit()
        logger.info(
            "Institution registry refreshed: %d created, %d updated, %d deactivated",
            len(result.created),
            len(result.updated),
            len(result.deactivated),
        )
        return result

    def is_refresh_due(self, db: Session, now: Optional[datetime] = None) -> bool:
        """True when the registry is empty or its newest refresh is older than the interval.

        Institutions deactivated by an earlier refresh keep their old
        timestamp, so only the most recent refresh counts.
        """
        now = as_naive_utc(now) if now is not None else self._clock()
        count, newest = db.query(
            func.count(Institution.id), func.max(Institution.last_refreshed_at)
        ).one()
        if not count or newest is None:
            return True
        return now - newest >= self._refresh_interval

    def get(self, db: Session, institution_id: str) -> Institution:
        institution = db.query(Institution).filter(Institution.id == institution_id).first()
        if institution is None:
            raise NotFoundError("Institution", institution_id)
        return institution

    def get_by_code(self, db: Session, code: str) -> Optional[Institution]:
        return db.query(Institution).filter(Institution.code == code).first()

    def require_active(self, db: Session, code: str) -> Institution:
        """Return the active institution for ``code``, or raise NotFoundError."""
        institution = self.get_by_code(db, code)
        if institution is None or not institution.is_active:
            raise NotFoundError("Institution", code)
        return institution

    def list_active(self, db: Session) -> list[Institution]:
        return (
            db.query(Institution)
            .filter(Institution.is_active.is_(True))
            .order_by(Institution.name)
            .all()
        )

    def any_certificate_required(self, db: Session) -> bool:
        return (
            db.query(Institution.id)
            .filter(
                Institution.is_active.is_(True),
                Institution.certificate_required.is_(True),
            )
            .first()
            is not None
        )

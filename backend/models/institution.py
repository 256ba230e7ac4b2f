"""Institution model - a participating Open Finance institution."""

from sqlalchemy import Boolean, Column, DateTime, String

from database import Base
from models.utils import generate_uuid, utc_now


class Institution(Base):
    """A bank or financial entity exposing Open Finance endpoints.

    Rows are written only by the institution registry refresh; the code is
    the stable identity shared with the participant directory.
    """

    __tablename__ = "open_finance_institutions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    code = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    api_base_url = Column(String(512), nullable=False)
    authorization_url = Column(String(512), nullable=False)
    token_url = Column(String(512), nullable=False)
    revocation_url = Column(String(512), nullable=True)
    certificate_required = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_refreshed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    @property
    def effective_revocation_url(self) -> str:
        """Revocation endpoint, falling back to the token URL's sibling."""
        if self.revocation_url:
            return self.revocation_url
        return self.token_url.replace("/token", "/revoke")

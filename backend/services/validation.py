"""Explicit request and configuration validation.

Each ``validate_*`` function returns a list of :class:`ValidationIssue`;
an empty list means the input is valid. Callers decide how to surface the
issues (``raise_if_invalid`` for service entry points, logging at startup).
"""

import os
import re
from dataclasses import dataclass

from config import Settings
from models import SyncType
from services.exceptions import InvalidRequestError

# OAuth scope tokens: printable ASCII without spaces, quotes or backslash
_SCOPE_PATTERN = re.compile(r"^[\x21\x23-\x5B\x5D-\x7E]+$")
MAX_ID_LENGTH = 36


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    code: str = "invalid"


def _require_id(issues: list[ValidationIssue], field: str, value) -> None:
    if value is None or not str(value).strip():
        issues.append(ValidationIssue(field, "is required", "required"))
    elif len(str(value)) > MAX_ID_LENGTH:
        issues.append(
            ValidationIssue(field, f"must be at most {MAX_ID_LENGTH} characters", "too_long")
        )


def validate_consent_request(
    user_id: str | None,
    institution_code: str | None,
    scopes: list[str] | None,
) -> list[ValidationIssue]:
    """Validate a consent initiation request. ``scopes=None`` means defaults."""
    issues: list[ValidationIssue] = []
    _require_id(issues, "user_id", user_id)
    if institution_code is None or not institution_code.strip():
        issues.append(ValidationIssue("institution_code", "is required", "required"))
    if scopes is not None:
        if not scopes:
            issues.append(ValidationIssue("scopes", "must not be empty", "required"))
        for scope in scopes:
            if not isinstance(scope, str) or not _SCOPE_PATTERN.match(scope):
                issues.append(ValidationIssue("scopes", f"invalid scope {scope!r}"))
    return issues


def validate_callback_request(
    consent_id: str | None,
    authorization_code: str | None,
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    _require_id(issues, "consent_id", consent_id)
    if authorization_code is None or not authorization_code.strip():
        issues.append(ValidationIssue("code", "is required", "required"))
    return issues


def validate_sync_request(
    user_id: str | None,
    account_id: str | None,
    sync_type,
) -> list[ValidationIssue]:
    """Validate a manual sync trigger."""
    issues: list[ValidationIssue] = []
    _require_id(issues, "user_id", user_id)
    _require_id(issues, "account_id", account_id)
    if isinstance(sync_type, SyncType):
        return issues
    if sync_type is None:
        issues.append(ValidationIssue("sync_type", "is required", "required"))
    elif sync_type not in {t.value for t in SyncType}:
        allowed = ", ".join(t.value for t in SyncType)
        issues.append(ValidationIssue("sync_type", f"must be one of {allowed}"))
    return issues


def validate_settings(
    config: Settings,
    certificates_required: bool = False,
) -> list[ValidationIssue]:
    """Check the Open Finance configuration surface.

    Args:
        config: Settings instance to check.
        certificates_required: True when any active institution requires
            mutual TLS, which makes the certificate paths mandatory.
    """
    issues: list[ValidationIssue] = []
    if not config.OPEN_FINANCE_CLIENT_ID:
        issues.append(ValidationIssue("OPEN_FINANCE_CLIENT_ID", "is not configured", "required"))
    if not config.OPEN_FINANCE_CLIENT_SECRET:
        issues.append(
            ValidationIssue("OPEN_FINANCE_CLIENT_SECRET", "is not configured", "required")
        )
    if not config.OPEN_FINANCE_REDIRECT_URI.startswith(("http://", "https://")):
        issues.append(
            ValidationIssue("OPEN_FINANCE_REDIRECT_URI", "must be an absolute http(s) URL")
        )
    if not config.default_scopes:
        issues.append(
            ValidationIssue("OPEN_FINANCE_DEFAULT_SCOPES", "must list at least one scope", "required")
        )
    if not config.OPEN_FINANCE_TOKEN_ENCRYPTION_KEY:
        issues.append(
            ValidationIssue("OPEN_FINANCE_TOKEN_ENCRYPTION_KEY", "is not configured", "required")
        )

    cert_fields = (
        "OPEN_FINANCE_CLIENT_CERT_PATH",
        "OPEN_FINANCE_PRIVATE_KEY_PATH",
        "OPEN_FINANCE_CA_CERT_PATH",
    )
    for field in cert_fields:
        path = getattr(config, field)
        if not path:
            # CA bundle may fall back to the system store
            if certificates_required and field != "OPEN_FINANCE_CA_CERT_PATH":
                issues.append(
                    ValidationIssue(field, "is required by certificate-bound institutions", "required")
                )
        elif not os.path.isfile(path):
            issues.append(ValidationIssue(field, f"file not found: {path}", "missing_file"))
    return issues


def raise_if_invalid(issues: list[ValidationIssue]) -> None:
    """Raise InvalidRequestError when ``issues`` is non-empty."""
    if issues:
        raise InvalidRequestError(issues)

"""OS keychain storage for the Open Finance secrets.

The OAuth client id/secret and the Fernet key that encrypts stored
consent tokens live under one keyring service. ``keyring`` is imported
lazily; without a usable backend every lookup returns ``None`` and the
settings fall back to environment variables.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "open-finance-sync"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "OPEN_FINANCE_CLIENT_ID",
        "OPEN_FINANCE_CLIENT_SECRET",
        "OPEN_FINANCE_TOKEN_ENCRYPTION_KEY",
    }
)


def _keyring():
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def _check_key(key: str, action: str) -> bool:
    if key in CREDENTIAL_KEYS:
        return True
    logger.warning("Refusing to %s non-credential key %s", action, key)
    return False


def get_credential(key: str) -> str | None:
    """Return the stored value for ``key``, or ``None`` if absent or unavailable."""
    backend = _keyring()
    if backend is None:
        return None
    try:
        return backend.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain read failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store ``value`` under ``key``; only :data:`CREDENTIAL_KEYS` are accepted.

    Returns:
        ``True`` if the keychain accepted the value.
    """
    if not _check_key(key, "store"):
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store empty value for %s", key)
        return False

    backend = _keyring()
    if backend is None:
        logger.warning("keyring is not installed; %s not stored", key)
        return False
    try:
        backend.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Keychain write failed for %s", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    if not _check_key(key, "delete"):
        return False
    backend = _keyring()
    if backend is None:
        return False
    try:
        backend.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain delete failed for %s", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True


def credential_status() -> dict[str, bool]:
    """Map each credential key to whether the keychain holds a value for it."""
    return {key: bool(get_credential(key)) for key in sorted(CREDENTIAL_KEYS)}

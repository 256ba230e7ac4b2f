"""Fernet encryption for OAuth tokens stored on consents."""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from config import settings
from integrations.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _fernet_key(secret: str) -> bytes:
    """Use ``secret`` directly when it is a Fernet key, else derive one from it."""
    raw = secret.encode()
    try:
        if len(base64.urlsafe_b64decode(raw)) == 32:
            return raw
    except (ValueError, TypeError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())


class TokenCipher:
    """Encrypt and decrypt tokens for storage in TEXT columns.

    The key comes from OPEN_FINANCE_TOKEN_ENCRYPTION_KEY (environment or
    keychain). A missing key is a configuration error: tokens are never
    stored in plain text.
    """

    def __init__(self, key: str | None = None):
        secret = key if key is not None else settings.OPEN_FINANCE_TOKEN_ENCRYPTION_KEY
        if not secret:
            raise ConfigurationError("OPEN_FINANCE_TOKEN_ENCRYPTION_KEY is not configured")
        self._fernet = Fernet(_fernet_key(secret))

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, token: str | None) -> str | None:
        if not token:
            return None
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt(self, encrypted: str | None) -> str | None:
        """Decrypt a stored token.

        Raises:
            ConfigurationError: if the value was encrypted with another key.
        """
        if not encrypted:
            return None
        try:
            return self._fernet.decrypt(encrypted.encode()).decode()
        except InvalidToken as exc:
            logger.error("Stored token could not be decrypted with the configured key")
            raise ConfigurationError(
                "Stored token cannot be decrypted; was the encryption key rotated?"
            ) from exc

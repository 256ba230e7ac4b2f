"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./open_finance.db"

    # Open Finance API
    OPEN_FINANCE_ENABLED: bool = True
    OPEN_FINANCE_SANDBOX_BASE_URL: str = "https://api.sandbox.openfinancebrasil.org.br"
    OPEN_FINANCE_PRODUCTION_BASE_URL: str = "https://api.openfinancebrasil.org.br"
    OPEN_FINANCE_USE_PRODUCTION: bool = False

    # OAuth client registration (client id/secret may live in the keychain)
    OPEN_FINANCE_CLIENT_ID: str = ""
    OPEN_FINANCE_CLIENT_SECRET: str = ""
    OPEN_FINANCE_REDIRECT_URI: str = (
        "http://localhost:8000/api/open-finance/consents/callback"
    )
    OPEN_FINANCE_DEFAULT_SCOPES: str = "accounts,transactions,payments"

    # Mutual TLS material, required by institutions with certificate_required
    OPEN_FINANCE_CLIENT_CERT_PATH: str = ""
    OPEN_FINANCE_PRIVATE_KEY_PATH: str = ""
    OPEN_FINANCE_CA_CERT_PATH: str = ""

    # Fernet key used to encrypt stored OAuth tokens
    OPEN_FINANCE_TOKEN_ENCRYPTION_KEY: str = ""

    # Sync policy
    SYNC_ENABLED: bool = True
    BALANCE_SYNC_INTERVAL_MINUTES: int = 15
    TRANSACTION_SYNC_INTERVAL_HOURS: int = 24
    TOKEN_REFRESH_BEFORE_EXPIRATION_MINUTES: int = 5
    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_DELAY_MS: int = 5000
    SYNC_WORKER_COUNT: int = 4
    TRANSACTION_LOOKBACK_DAYS: int = 30

    # Participant directory
    INSTITUTION_REGISTRY_ENDPOINT: str = (
        "https://api.openfinancebrasil.org.br/institutions"
    )
    INSTITUTION_REGISTRY_REFRESH_INTERVAL_HOURS: int = 24
    INSTITUTION_REGISTRY_AUTO_REFRESH: bool = True

    @field_validator(
        "BALANCE_SYNC_INTERVAL_MINUTES",
        "TRANSACTION_SYNC_INTERVAL_HOURS",
        "INSTITUTION_REGISTRY_REFRESH_INTERVAL_HOURS",
        "SYNC_WORKER_COUNT",
        "MAX_RETRY_ATTEMPTS",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Intervals, worker count and attempt budget must be at least 1."""
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator(
        "TOKEN_REFRESH_BEFORE_EXPIRATION_MINUTES",
        "RETRY_DELAY_MS",
        "TRANSACTION_LOOKBACK_DAYS",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"must be >= 0, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    # Leave httpx/httpcore at LOG_LEVEL to trace institution API traffic
    LOG_HTTP_TRAFFIC: bool = False

    @property
    def open_finance_base_url(self) -> str:
        """Sandbox or production API root, per OPEN_FINANCE_USE_PRODUCTION."""
        if self.OPEN_FINANCE_USE_PRODUCTION:
            return self.OPEN_FINANCE_PRODUCTION_BASE_URL
        return self.OPEN_FINANCE_SANDBOX_BASE_URL

    @property
    def default_scopes(self) -> list[str]:
        """OPEN_FINANCE_DEFAULT_SCOPES split on commas or whitespace."""
        raw = self.OPEN_FINANCE_DEFAULT_SCOPES.replace(",", " ")
        return [s for s in raw.split() if s]


settings = Settings()

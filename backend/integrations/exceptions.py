"""Typed exception hierarchy for Open Finance integration errors.

Provides structured exceptions for differentiated error handling
(configuration vs auth vs transient network errors vs data issues).
"""


class OpenFinanceError(Exception):
    """Base exception for all Open Finance integration errors.

    Carries the institution code so callers can identify which
    institution failed.
    """

    def __init__(self, message: str, institution_code: str = ""):
        self.institution_code = institution_code
        super().__init__(message)


class ConfigurationError(OpenFinanceError):
    """OAuth client or certificate configuration missing or invalid.

    Fatal at startup or consent initiation; never retried.
    """

    pass


class ExternalApiError(OpenFinanceError):
    """HTTP 4xx/5xx responses from an institution's API."""

    def __init__(
        self,
        message: str,
        institution_code: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, institution_code)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ExternalApiConnectionError(ExternalApiError):
    """Network failures: timeouts, DNS resolution, connection refused.

    Retriable by default.
    """

    def __init__(self, message: str, institution_code: str = "", retriable: bool = True):
        self._retriable = retriable
        super().__init__(message, institution_code, status_code=None)

    @property
    def retriable(self) -> bool:
        return self._retriable


class ExternalApiAuthError(ExternalApiError):
    """Token rejected by the institution (HTTP 401/403). Never retriable."""

    @property
    def retriable(self) -> bool:
        return False


class ExternalApiDataError(ExternalApiError):
    """Malformed or unparseable response from the institution."""

    @property
    def retriable(self) -> bool:
        return False

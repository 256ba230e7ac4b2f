"""External API integrations.

This package contains:
- Open Finance protocol: interfaces and payload dataclasses shared by services
- Open Finance client: httpx implementation of the OAuth and account APIs
- Institution directory: participant metadata source for the registry
"""

from integrations.open_finance_protocol import (
    ExternalAPIClient,
    InstitutionDirectory,
    InstitutionRecord,
    OAuthClient,
    RemoteAccount,
    RemoteBalance,
    RemoteTransaction,
    TokenResponse,
)

__all__ = [
    "ExternalAPIClient",
    "InstitutionDirectory",
    "InstitutionRecord",
    "OAuthClient",
    "RemoteAccount",
    "RemoteBalance",
    "RemoteTransaction",
    "TokenResponse",
]

"""API route handlers."""
from . import accounts, consents, institutions

__all__ = ["accounts", "consents", "institutions"]

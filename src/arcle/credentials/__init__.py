"""Credential lifecycle: resolution, refresh and session expiry."""

from arcle.credentials.manager import CredentialManager
from arcle.credentials.store import CredentialStore
from arcle.credentials.tokens import build_credential, token_expiry

__all__ = [
    "CredentialManager",
    "CredentialStore",
    "build_credential",
    "token_expiry",
]

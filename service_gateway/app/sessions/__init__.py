"""
Session state for the Gateway Service.

- models: immutable identity, credential and session snapshots
- store: in-memory, per-key atomic credential store
- lifecycle: lazy expiry checks and refresh against the identity provider
"""

from .models import Credential, CredentialFamily, Identity, Session
from .store import CredentialStore
from .lifecycle import TokenLifecycleManager

__all__ = [
    "Credential",
    "CredentialFamily",
    "CredentialStore",
    "Identity",
    "Session",
    "TokenLifecycleManager",
]

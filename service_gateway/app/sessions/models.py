"""
Session data model for the Gateway Service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialFamily(Enum):
    """Upstream credential families held per user."""
    MANAGEMENT = "management"  # Keyrock admin API token
    ACCESS = "access"          # OAuth2 token accepted by the PEP proxy


@dataclass(frozen=True)
class Identity:
    """User identity captured at login."""

    user_id: str
    username: str
    email: str
    roles: Tuple[str, ...] = field(default_factory=tuple)

    def to_public_dict(self) -> Dict[str, Any]:
        """Client-facing projection used by /auth/login and /auth/me."""
        return {
            "id": self.user_id,
            "username": self.username,
            "email": self.email,
            "roles": list(self.roles),
        }


@dataclass(frozen=True)
class Credential:
    """Opaque upstream token and the instant it stops being usable."""

    token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        # Boundary is inclusive: a token expiring exactly now is unusable.
        return (now or utc_now()) >= self.expires_at


@dataclass(frozen=True)
class Session:
    """Immutable snapshot of everything the gateway holds for one user."""

    identity: Identity
    management: Credential
    access: Credential
    refresh_token: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def renewable(self) -> bool:
        return bool(self.refresh_token)

    def credential(self, family: CredentialFamily) -> Credential:
        if family is CredentialFamily.MANAGEMENT:
            return self.management
        return self.access

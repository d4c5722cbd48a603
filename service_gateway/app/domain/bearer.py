"""
Stateless bearer tokens issued to gateway clients.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Tuple

from jose import JWTError, jwt

from shared.errors import AuthenticationError
from ..sessions.models import Identity

IDENTITY_CLAIMS = ("userId", "username", "email", "roles")


class BearerTokenService:
    """Signs and verifies the self-contained tokens clients present.

    The payload carries the identity claims only; upstream credentials stay in
    the credential store and never leave the gateway.
    """

    def __init__(self, secret: str, *, algorithm: str = "HS256", ttl_seconds: int = 3600):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds

    def issue(self, identity: Identity) -> Tuple[str, int]:
        """Return a signed token for the identity and its time-to-live in seconds."""
        now = int(time.time())
        claims: Dict[str, Any] = {
            "userId": identity.user_id,
            "username": identity.username,
            "email": identity.email,
            "roles": list(identity.roles),
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm), self.ttl_seconds

    def verify(self, token: str) -> Identity:
        """Decode a token issued by this gateway, or raise AuthenticationError."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise AuthenticationError("Invalid or expired token") from exc

        user_id = claims.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Token missing user identity")

        roles = claims.get("roles")
        if not isinstance(roles, list):
            roles = []

        return Identity(
            user_id=user_id,
            username=str(claims.get("username") or ""),
            email=str(claims.get("email") or ""),
            roles=tuple(role for role in roles if isinstance(role, str)),
        )

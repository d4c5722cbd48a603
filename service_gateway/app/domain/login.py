"""
Login orchestration for Gateway.

A login is a fixed sequence of identity provider calls, each consuming the
previous step's output:

1. management token (password)           terminal on failure
2. OAuth2 access/refresh tokens (password grant)  terminal on failure
3. user profile (access token)           terminal on failure
4. application roles (management token)  degrades to the default role
5. session creation + bearer token for the client
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import httpx

from shared.errors import GatewayException
from shared.logging import get_logger
from ..adapters.keyrock_client import IssuedToken, KeyrockClient, OAuth2Grant
from ..sessions.models import Credential, Identity, Session
from ..sessions.store import CredentialStore
from .bearer import BearerTokenService

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class LoginResult:
    """What the client receives after a successful login."""

    access_token: str
    expires_in: int
    identity: Identity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "expiresIn": self.expires_in,
            "user": self.identity.to_public_dict(),
        }


class LoginOrchestrator:
    """Turns primary user credentials into a session and a bearer token."""

    def __init__(
        self,
        identity_provider: KeyrockClient,
        store: CredentialStore,
        bearer_tokens: BearerTokenService,
        *,
        app_id: str,
        default_role: str = "user",
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.identity_provider = identity_provider
        self.store = store
        self.bearer_tokens = bearer_tokens
        self.app_id = app_id
        self.default_role = default_role
        self.metrics = metrics
        self.logger = get_logger("gateway.login")

    async def login(self, email: str, password: str) -> LoginResult:
        try:
            management = await self._acquire_management_credential(email, password)
            grant = await self._acquire_access_credential(email, password)
            profile = await self._fetch_profile(grant)
            roles = await self._fetch_roles(profile["id"], management)
            result = self._establish_session(profile, roles, management, grant)
        except GatewayException as e:
            self._count("failed")
            self.logger.warning("Login failed", code=e.code)
            raise

        self._count("succeeded")
        return result

    async def _acquire_management_credential(self, email: str, password: str) -> IssuedToken:
        return await self.identity_provider.get_management_token(email, password)

    async def _acquire_access_credential(self, email: str, password: str) -> OAuth2Grant:
        return await self.identity_provider.get_oauth2_token(email, password)

    async def _fetch_profile(self, grant: OAuth2Grant) -> Dict[str, Any]:
        profile = await self.identity_provider.get_user_info(grant.access_token)
        self.logger.debug("User profile fetched", user_id=profile["id"])
        return profile

    async def _fetch_roles(self, user_id: str, management: IssuedToken) -> List[str]:
        """Resolve application roles, falling back to the default role."""
        try:
            assignments = await self.identity_provider.list_user_roles(
                self.app_id, user_id, management.token
            )
        except (httpx.HTTPError, GatewayException, ValueError) as e:
            self.logger.warning(
                "Could not fetch user roles, using default role",
                user_id=user_id,
                default_role=self.default_role,
                error=str(e),
            )
            return [self.default_role]

        return [
            str(assignment.get("role_id") or assignment.get("name") or self.default_role)
            for assignment in assignments
        ]

    def _establish_session(self, profile: Dict[str, Any], roles: List[str],
                           management: IssuedToken, grant: OAuth2Grant) -> LoginResult:
        identity = Identity(
            user_id=str(profile["id"]),
            username=str(profile.get("username") or ""),
            email=str(profile.get("email") or ""),
            roles=tuple(roles),
        )
        session = Session(
            identity=identity,
            management=Credential(token=management.token, expires_at=management.expires_at),
            access=Credential(token=grant.access_token, expires_at=grant.expires_at),
            refresh_token=grant.refresh_token,
        )
        # A new login replaces whatever the user had before.
        self.store.create(identity.user_id, session)

        access_token, expires_in = self.bearer_tokens.issue(identity)
        self.logger.info("User signed in", user_id=identity.user_id, roles=list(identity.roles))
        return LoginResult(access_token=access_token, expires_in=expires_in, identity=identity)

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("logins_total", outcome=outcome)

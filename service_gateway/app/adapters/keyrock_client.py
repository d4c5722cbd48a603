"""
Keyrock identity provider client for Gateway.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from shared.errors import (
    IdentityProviderUnavailableError,
    InvalidCredentialsError,
    RefreshFailedError,
)
from shared.logging import get_logger
from ..sessions.models import utc_now

# Statuses that mean "these credentials are wrong" rather than "Keyrock is broken".
_REJECTED_CREDENTIAL_STATUSES = {400, 401, 403, 404}


@dataclass(frozen=True)
class IssuedToken:
    """Keyrock management (X-Subject-Token) token."""
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class OAuth2Grant:
    """Result of an OAuth2 password or refresh_token grant."""
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    expires_at: datetime


def parse_keyrock_timestamp(value: Any) -> Optional[datetime]:
    """Parse Keyrock ISO-8601 timestamps with Z or offset suffixes."""
    if not isinstance(value, str) or not value.strip():
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class KeyrockClient:
    """Client for the Keyrock identity provider.

    Covers the calls the gateway makes on a user's behalf: management token
    issuance, OAuth2 password and refresh grants, profile lookup and the
    application role assignments of a user.
    """

    def __init__(
        self,
        keyrock_url: str,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = 10.0,
        management_token_ttl: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.keyrock_url = keyrock_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.management_token_ttl = management_token_ttl
        self.clock = clock
        self._transport = transport
        self.logger = get_logger("gateway.keyrock_client")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _basic_auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.client_id, self.client_secret)

    async def get_management_token(self, email: str, password: str) -> IssuedToken:
        """Obtain a Keyrock management token with the user's password."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.keyrock_url}/v1/auth/tokens",
                    json={"name": email, "password": password},
                )
        except httpx.TransportError as e:
            self.logger.error("Keyrock unreachable during token issuance", error=str(e))
            raise IdentityProviderUnavailableError(details={"http_error": str(e)})

        self._raise_for_login_status(response, "management_token")

        token = response.headers.get("X-Subject-Token")
        if not token:
            self.logger.warning("Keyrock token response missing X-Subject-Token")
            raise InvalidCredentialsError()

        token_info = self._json(response).get("token")
        expires_at = None
        if isinstance(token_info, dict):
            expires_at = parse_keyrock_timestamp(token_info.get("expires_at"))
        if expires_at is None:
            expires_at = self.clock() + timedelta(seconds=self.management_token_ttl)

        return IssuedToken(token=token, expires_at=expires_at)

    async def get_oauth2_token(self, email: str, password: str) -> OAuth2Grant:
        """Run the OAuth2 password grant for the configured application."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.keyrock_url}/oauth2/token",
                    data={"username": email, "password": password, "grant_type": "password"},
                    auth=self._basic_auth(),
                    headers={"Accept": "application/json"},
                )
        except httpx.TransportError as e:
            self.logger.error("Keyrock unreachable during OAuth2 grant", error=str(e))
            raise IdentityProviderUnavailableError(details={"http_error": str(e)})

        self._raise_for_login_status(response, "oauth2_token")
        grant = self._parse_grant(self._json(response))
        if grant is None:
            raise IdentityProviderUnavailableError("Malformed OAuth2 token response")
        return grant

    async def refresh_oauth2_token(self, refresh_token: str) -> OAuth2Grant:
        """Exchange a refresh token for a new access token.

        Every failure mode is reported as RefreshFailedError: the caller can
        only recover by logging in again.
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.keyrock_url}/oauth2/token",
                    data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                    auth=self._basic_auth(),
                    headers={"Accept": "application/json"},
                )
        except httpx.TransportError as e:
            self.logger.error("Keyrock unreachable during token refresh", error=str(e))
            raise RefreshFailedError()

        if response.status_code != 200:
            self.logger.warning("Keyrock refused token refresh", status_code=response.status_code)
            raise RefreshFailedError()

        grant = self._parse_grant(self._json(response))
        if grant is None:
            raise RefreshFailedError()
        return grant

    async def get_user_info(self, access_token: str) -> Dict[str, Any]:
        """Fetch the profile of the user owning an OAuth2 access token."""
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.keyrock_url}/user",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.TransportError as e:
            self.logger.error("Keyrock unreachable during user lookup", error=str(e))
            raise IdentityProviderUnavailableError(details={"http_error": str(e)})

        self._raise_for_login_status(response, "user_info")
        profile = self._json(response)
        if not profile.get("id"):
            raise IdentityProviderUnavailableError("Malformed user info response")
        return profile

    async def list_user_roles(self, app_id: str, user_id: str, management_token: str) -> List[Dict[str, Any]]:
        """List the role assignments of a user within an application."""
        async with self._client() as client:
            response = await client.get(
                f"{self.keyrock_url}/v1/applications/{app_id}/users/{user_id}/roles",
                headers={"X-Auth-Token": management_token},
            )
        response.raise_for_status()

        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("role_user_assignments", [])
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    def _raise_for_login_status(self, response: httpx.Response, step: str) -> None:
        if response.is_success:
            return
        if response.status_code in _REJECTED_CREDENTIAL_STATUSES:
            self.logger.warning("Keyrock rejected credentials", step=step, status_code=response.status_code)
            raise InvalidCredentialsError()
        self.logger.error("Keyrock error", step=step, status_code=response.status_code)
        raise IdentityProviderUnavailableError(
            f"Keyrock error: {response.status_code}",
            details={"status_code": response.status_code},
        )

    def _parse_grant(self, payload: Dict[str, Any]) -> Optional[OAuth2Grant]:
        access_token = payload.get("access_token")
        if not access_token:
            return None
        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return OAuth2Grant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            expires_in=expires_in,
            expires_at=self.clock() + timedelta(seconds=expires_in),
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

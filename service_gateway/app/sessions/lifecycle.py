"""
Token lifecycle management for Gateway sessions.

Credentials are checked lazily at the point of use; there is no background
timer. An expired access credential is renewed with the session's refresh
credential, the management credential cannot be renewed at all.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, TYPE_CHECKING

from shared.errors import CredentialUnrenewableError, RefreshFailedError, SessionNotFoundError
from shared.logging import get_logger
from .models import Credential, CredentialFamily, Session, utc_now
from .store import CredentialStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.keyrock_client import KeyrockClient
    from shared.metrics import MetricsCollector


class TokenLifecycleManager:
    """Keeps upstream credentials usable for the forwarder and auth routes."""

    def __init__(
        self,
        store: CredentialStore,
        identity_provider: "KeyrockClient",
        *,
        clock: Callable[[], datetime] = utc_now,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.store = store
        self.identity_provider = identity_provider
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.token_lifecycle")

    def is_live(self, credential: Credential) -> bool:
        return not credential.is_expired(self.clock())

    async def ensure_live(self, session: Session, family: CredentialFamily) -> Credential:
        """Return a live credential of the given family, refreshing if needed.

        Raises CredentialUnrenewableError when the credential expired and the
        session holds nothing to renew it with, RefreshFailedError when the
        identity provider refuses the refresh.
        """
        credential = session.credential(family)
        if self.is_live(credential):
            return credential

        if family is CredentialFamily.MANAGEMENT or not session.renewable:
            self.logger.info(
                "Credential expired and cannot be renewed",
                user_id=session.user_id,
                family=family.value,
            )
            self._count_refresh(family, "unrenewable")
            raise CredentialUnrenewableError()

        # Serialize per user so concurrent requests do not each spend the
        # refresh token; late arrivals pick up the winner's credential.
        async with self.store.lock_for(session.user_id):
            current = self.store.get(session.user_id)
            if current is None:
                raise SessionNotFoundError()

            credential = current.credential(family)
            if self.is_live(credential):
                return credential
            if not current.renewable:
                self._count_refresh(family, "unrenewable")
                raise CredentialUnrenewableError()

            return await self._refresh(current)

    async def _refresh(self, session: Session) -> Credential:
        self.logger.info("Refreshing access credential", user_id=session.user_id)
        try:
            grant = await self.identity_provider.refresh_oauth2_token(session.refresh_token)
        except RefreshFailedError:
            self._count_refresh(CredentialFamily.ACCESS, "failed")
            self.logger.warning("Access credential refresh failed", user_id=session.user_id)
            raise

        access = Credential(token=grant.access_token, expires_at=grant.expires_at)
        # Access and refresh credentials are swapped in one snapshot.
        self.store.update(
            session.user_id,
            access=access,
            refresh_token=grant.refresh_token or session.refresh_token,
        )
        self._count_refresh(CredentialFamily.ACCESS, "refreshed")
        self.logger.info(
            "Access credential refreshed",
            user_id=session.user_id,
            expires_at=access.expires_at.isoformat(),
            refresh_reissued=bool(grant.refresh_token),
        )
        return access

    def _count_refresh(self, family: CredentialFamily, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("token_refresh_total", family=family.value, outcome=outcome)

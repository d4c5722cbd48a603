"""
Authenticated forwarding to the context broker via its PEP proxy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING, Union

import httpx

from shared.errors import (
    MethodNotSupportedError,
    SessionNotFoundError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from shared.logging import get_logger
from ..adapters.responses import decode_body
from ..sessions.lifecycle import TokenLifecycleManager
from ..sessions.models import CredentialFamily
from ..sessions.store import CredentialStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Downstream headers worth handing back to the caller.
PASSTHROUGH_HEADERS = ("Location", "Fiware-Total-Count")

# A mapping, or key/value pairs when a key repeats (?attrs=a&attrs=b).
QueryParams = Union[Mapping[str, Any], Sequence[Tuple[str, str]]]


@dataclass(frozen=True)
class ForwardedResponse:
    """Successful downstream answer, passed through unchanged."""

    status_code: int
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


class AuthenticatedForwarder:
    """Issues context broker calls with a user's live access credential."""

    service_name = "orion"
    credential_family = CredentialFamily.ACCESS

    def __init__(
        self,
        store: CredentialStore,
        lifecycle: TokenLifecycleManager,
        base_url: str,
        *,
        fiware_service: str = "openiot",
        fiware_service_path: str = "/",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.base_url = base_url.rstrip("/")
        self.fiware_service = fiware_service
        self.fiware_service_path = fiware_service_path
        self.timeout = timeout
        self.metrics = metrics
        self._transport = transport
        self.logger = get_logger("gateway.forwarder")

    def build_headers(self, method: str, access_token: str) -> Dict[str, str]:
        headers = {
            "X-Auth-Token": access_token,
            "Fiware-Service": self.fiware_service,
            "Fiware-ServicePath": self.fiware_service_path,
        }
        if method in BODY_METHODS:
            headers["Content-Type"] = "application/json"
        return headers

    async def forward(
        self,
        user_id: str,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[QueryParams] = None,
    ) -> ForwardedResponse:
        """Forward a request on behalf of a user.

        Session and credential failures propagate unchanged; downstream error
        statuses become UpstreamRejectedError with the downstream body and a
        missing response becomes UpstreamUnavailableError.
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise MethodNotSupportedError(method)

        session = self.store.get(user_id)
        if session is None:
            self.logger.info("No session for forwarded request", user_id=user_id)
            raise SessionNotFoundError()

        credential = await self.lifecycle.ensure_live(session, self.credential_family)

        request_kwargs: Dict[str, Any] = {
            "headers": self.build_headers(method, credential.token),
            "params": query or None,
        }
        if method in BODY_METHODS and body is not None:
            request_kwargs["json"] = body

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, f"{self.base_url}{path}", **request_kwargs)
        except httpx.TransportError as e:
            self._observe(method, "unavailable", start_time)
            self.logger.error(
                "Downstream unreachable", service=self.service_name, method=method, path=path, error=str(e)
            )
            raise UpstreamUnavailableError(self.service_name, details={"http_error": str(e)})

        payload = decode_body(response)
        if response.is_error:
            self._observe(method, "rejected", start_time)
            self.logger.warning(
                "Downstream rejected forwarded request",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamRejectedError(self.service_name, response.status_code, payload)

        self._observe(method, "ok", start_time)
        headers = {
            name: response.headers[name]
            for name in PASSTHROUGH_HEADERS
            if name in response.headers
        }
        return ForwardedResponse(status_code=response.status_code, payload=payload, headers=headers)

    def _observe(self, method: str, outcome: str, start_time: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter(
            "upstream_requests_total", service=self.service_name, method=method, outcome=outcome
        )
        histogram = self.metrics.get_metric("upstream_request_duration_seconds")
        if histogram is not None:
            histogram.labels(service=self.service_name).observe(time.time() - start_time)

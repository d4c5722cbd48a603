"""
API Gateway service for the FIWARE Access Gateway.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx
from fastapi import Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import SessionNotFoundError, ValidationFailedError

from .activity import ActivityEventBus, ActivityLogMiddleware, activity_event_stream
from .adapters import IoTAgentClient, KeyrockClient
from .domain import (
    AuthenticatedForwarder,
    AuthGate,
    BearerTokenService,
    ForwardedResponse,
    LoginOrchestrator,
    ManagementForwarder,
)
from .sessions import CredentialFamily, CredentialStore, Identity, TokenLifecycleManager
from .sessions.models import utc_now


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RoleAssignmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role_id: str = Field(..., alias="roleId", min_length=1)


class UltralightMeasurement(BaseModel):
    """Ultralight 2.0 measurement, e.g. ``t|25|h|50``."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", min_length=1)
    device_id: str = Field(..., alias="deviceId", min_length=1)
    data: str = Field(..., min_length=1)
    access_token: Optional[str] = Field(None, alias="accessToken")

    @field_validator("data")
    @classmethod
    def validate_pairs(cls, value: str) -> str:
        for group in value.split("#"):
            parts = group.split("|")
            if len(parts) < 2 or len(parts) % 2 != 0:
                raise ValueError("data must be key|value pairs")
            if any(not key.strip() for key in parts[0::2]):
                raise ValueError("data contains an empty measurement key")
        return value


class JsonMeasurement(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", min_length=1)
    device_id: str = Field(..., alias="deviceId", min_length=1)
    data: Dict[str, Any] = Field(..., min_length=1)
    access_token: Optional[str] = Field(None, alias="accessToken")


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__("gateway", 8000, config or get_config("gateway", 8000))
        timeout = self.config.upstream_timeout_seconds

        self.store = CredentialStore(metrics=self.metrics)
        self.identity_provider = KeyrockClient(
            self.config.keyrock_url,
            self.config.keyrock_client_id,
            self.config.keyrock_client_secret,
            timeout=timeout,
            management_token_ttl=self.config.management_token_ttl_seconds,
            transport=transport,
            clock=clock,
        )
        self.lifecycle = TokenLifecycleManager(
            self.store, self.identity_provider, clock=clock, metrics=self.metrics
        )
        self.bearer_tokens = BearerTokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            ttl_seconds=self.config.jwt_expires_in_seconds,
        )
        self.auth_gate = AuthGate(self.bearer_tokens)
        self.login_orchestrator = LoginOrchestrator(
            self.identity_provider,
            self.store,
            self.bearer_tokens,
            app_id=self.config.keyrock_app_id,
            default_role=self.config.default_role,
            metrics=self.metrics,
        )
        self.forwarder = AuthenticatedForwarder(
            self.store,
            self.lifecycle,
            self.config.pep_proxy_url,
            fiware_service=self.config.fiware_service,
            fiware_service_path=self.config.fiware_service_path,
            timeout=timeout,
            transport=transport,
            metrics=self.metrics,
        )
        self.management = ManagementForwarder(
            self.store,
            self.lifecycle,
            self.config.keyrock_url,
            timeout=timeout,
            transport=transport,
            metrics=self.metrics,
        )
        self.iot_agent = IoTAgentClient(
            self.config.iot_agent_url,
            self.config.iot_agent_south_proxy_url,
            timeout=timeout,
            transport=transport,
        )
        self.activity_bus = ActivityEventBus(
            capacity=self.config.activity_log_capacity,
            subscriber_queue_size=self.config.activity_subscriber_queue_size,
            metrics=self.metrics,
        )

        self.app.add_middleware(ActivityLogMiddleware, bus=self.activity_bus)

        self._setup_gateway_routes()
        self._setup_auth_routes()
        self._setup_orion_routes()
        self._setup_management_routes()
        self._setup_device_data_routes()
        self._setup_log_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "gateway",
                "message": "FIWARE Access Gateway",
                "version": "1.0.0"
            }

    def _setup_auth_routes(self):
        """Set up login, profile and logout routes."""

        @self.app.post("/auth/login")
        async def login(credentials: LoginRequest, request: Request):
            result = await self.login_orchestrator.login(credentials.email, credentials.password)
            # Attribute the sign-in to the new identity in the activity log.
            request.state.identity = result.identity
            return result.to_dict()

        @self.app.get("/auth/me")
        async def current_user(request: Request):
            """Current identity; the user's access credential is renewed if it lapsed."""
            identity = await self.auth_gate.authenticate_request(request)
            session = self.store.get(identity.user_id)
            if session is None:
                raise SessionNotFoundError()

            await self.lifecycle.ensure_live(session, CredentialFamily.ACCESS)
            return {"user": session.identity.to_public_dict()}

        @self.app.post("/auth/logout", status_code=204)
        async def logout(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            self.store.delete(identity.user_id)
            self.logger.info("User signed out", user_id=identity.user_id)
            return Response(status_code=204)

    def _setup_orion_routes(self):
        """Set up context broker routes, forwarded with the caller's credentials."""

        @self.app.get("/orion/entities")
        async def list_entities(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._forward(identity, "GET", "/v2/entities", query=request.query_params)

        @self.app.post("/orion/entities")
        async def create_entity(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            return await self._forward(identity, "POST", "/v2/entities", body=body)

        @self.app.get("/orion/entities/{entity_id}")
        async def get_entity(entity_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            path = f"/v2/entities/{self._path_id(entity_id)}"
            return await self._forward(identity, "GET", path, query=request.query_params)

        @self.app.delete("/orion/entities/{entity_id}")
        async def delete_entity(entity_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._forward(identity, "DELETE", f"/v2/entities/{self._path_id(entity_id)}")

        @self.app.patch("/orion/entities/{entity_id}/attrs")
        async def update_entity_attrs(entity_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            path = f"/v2/entities/{self._path_id(entity_id)}/attrs"
            return await self._forward(identity, "PATCH", path, body=body)

        @self.app.put("/orion/entities/{entity_id}/attrs")
        async def replace_entity_attrs(entity_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            path = f"/v2/entities/{self._path_id(entity_id)}/attrs"
            return await self._forward(identity, "PUT", path, body=body, status_code=204)

        @self.app.post("/orion/op/update")
        async def batch_update(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            return await self._forward(identity, "POST", "/v2/op/update", body=body, status_code=204)

        @self.app.get("/orion/types")
        async def list_types(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._forward(identity, "GET", "/v2/types", query=request.query_params)

        @self.app.get("/orion/subscriptions")
        async def list_subscriptions(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._forward(identity, "GET", "/v2/subscriptions", query=request.query_params)

        @self.app.post("/orion/subscriptions")
        async def create_subscription(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            return await self._forward(identity, "POST", "/v2/subscriptions", body=body)

        @self.app.get("/orion/subscriptions/{subscription_id}")
        async def get_subscription(subscription_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._forward(identity, "GET", f"/v2/subscriptions/{self._path_id(subscription_id)}")

        @self.app.patch("/orion/subscriptions/{subscription_id}")
        async def update_subscription(subscription_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            path = f"/v2/subscriptions/{self._path_id(subscription_id)}"
            return await self._forward(identity, "PATCH", path, body=body)

        @self.app.delete("/orion/subscriptions/{subscription_id}")
        async def delete_subscription(subscription_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._forward(identity, "DELETE", f"/v2/subscriptions/{self._path_id(subscription_id)}")

    def _setup_management_routes(self):
        """Set up Keyrock user and role administration routes.

        These run with the caller's management credential; an expired one is
        reported as 401 CREDENTIAL_UNRENEWABLE and never sent to Keyrock.
        """
        app_path = f"/v1/applications/{quote(self.config.keyrock_app_id, safe='')}"

        @self.app.get("/users")
        async def list_users(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._manage(identity, "GET", "/v1/users")

        @self.app.post("/users")
        async def create_user(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            return await self._manage(identity, "POST", "/v1/users", body=body)

        @self.app.get("/users/{user_id}")
        async def get_user(user_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._manage(identity, "GET", f"/v1/users/{self._path_id(user_id)}")

        @self.app.put("/users/{user_id}")
        async def update_user(user_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            return await self._manage(identity, "PATCH", f"/v1/users/{self._path_id(user_id)}", body=body)

        @self.app.delete("/users/{user_id}")
        async def delete_user(user_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            path = f"/v1/users/{self._path_id(user_id)}"
            return await self._manage(identity, "DELETE", path, status_code=204)

        @self.app.get("/users/{user_id}/roles")
        async def get_user_roles(user_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            path = f"{app_path}/users/{self._path_id(user_id)}/roles"
            return await self._manage(identity, "GET", path)

        @self.app.post("/users/{user_id}/roles")
        async def assign_role(user_id: str, assignment: RoleAssignmentRequest, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            path = f"{app_path}/users/{self._path_id(user_id)}/roles/{self._path_id(assignment.role_id)}"
            await self.management.forward(identity.user_id, "PUT", path)
            return {"message": "Role assigned successfully"}

        @self.app.delete("/users/{user_id}/roles/{role_id}")
        async def remove_role(user_id: str, role_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            path = f"{app_path}/users/{self._path_id(user_id)}/roles/{self._path_id(role_id)}"
            return await self._manage(identity, "DELETE", path, status_code=204)

        @self.app.get("/roles")
        async def list_roles(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._manage(identity, "GET", f"{app_path}/roles")

        @self.app.post("/roles")
        async def create_role(request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            return await self._manage(identity, "POST", f"{app_path}/roles", body=body)

        @self.app.get("/roles/{role_id}")
        async def get_role(role_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            return await self._manage(identity, "GET", f"{app_path}/roles/{self._path_id(role_id)}")

        @self.app.put("/roles/{role_id}")
        async def update_role(role_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            body = await self._read_json(request)
            path = f"{app_path}/roles/{self._path_id(role_id)}"
            return await self._manage(identity, "PATCH", path, body=body)

        @self.app.delete("/roles/{role_id}")
        async def delete_role(role_id: str, request: Request):
            identity = await self.auth_gate.authenticate_request(request)
            path = f"{app_path}/roles/{self._path_id(role_id)}"
            return await self._manage(identity, "DELETE", path, status_code=204)

    def _setup_device_data_routes(self):
        """Set up south-bound measurement ingestion routes."""

        @self.app.post("/iot/data/ultralight")
        async def send_ultralight(measurement: UltralightMeasurement):
            return await self.iot_agent.send_ultralight(
                measurement.api_key,
                measurement.device_id,
                measurement.data,
                measurement.access_token,
            )

        @self.app.post("/iot/data/json")
        async def send_json(measurement: JsonMeasurement):
            return await self.iot_agent.send_json(
                measurement.api_key,
                measurement.device_id,
                measurement.data,
                measurement.access_token,
            )

        @self.app.get("/iot/data/config")
        async def south_port_config():
            return {
                "southPortUrl": self.iot_agent.south_port_url,
                "proxyConfigured": self.iot_agent.south_proxy_configured,
            }

    def _setup_log_routes(self):
        """Set up activity log history and live stream routes."""

        @self.app.get("/logs")
        async def get_logs(
            request: Request,
            limit: int = Query(50, ge=0),
            offset: int = Query(0, ge=0),
        ):
            identity = await self.auth_gate.authenticate_request(request)
            self.auth_gate.require_role(identity, self.config.logs_required_role)

            page = self.activity_bus.query(limit=limit, offset=offset)
            return {
                "total": page["total"],
                "logs": [entry.to_dict() for entry in page["entries"]],
            }

        @self.app.get("/logs/stream")
        async def stream_logs(request: Request):
            """Live activity feed as Server-Sent Events."""
            identity = await self.auth_gate.authenticate_request(request)
            self.auth_gate.require_role(identity, self.config.logs_required_role)

            return StreamingResponse(
                activity_event_stream(request, self.activity_bus, self.config.sse_keepalive_seconds),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "Connection": "keep-alive",
                    "X-Accel-Buffering": "no",
                },
            )

    async def _forward(
        self,
        identity: Identity,
        method: str,
        path: str,
        body: Any = None,
        query: Any = None,
        status_code: Optional[int] = None,
    ) -> Response:
        """Forward to the context broker and shape the downstream answer.

        ``status_code`` overrides the downstream success status for operations
        whose client contract is a bare acknowledgement.
        """
        return await self._shape(
            self.forwarder, identity, method, path, body=body, query=query, status_code=status_code
        )

    async def _manage(self, identity: Identity, method: str, path: str,
                      body: Any = None, status_code: Optional[int] = None) -> Response:
        """Forward to the Keyrock management API with the management credential."""
        return await self._shape(self.management, identity, method, path, body=body, status_code=status_code)

    async def _shape(
        self,
        forwarder: AuthenticatedForwarder,
        identity: Identity,
        method: str,
        path: str,
        body: Any = None,
        query: Any = None,
        status_code: Optional[int] = None,
    ) -> Response:
        # multi_items keeps every value of a repeated query key.
        forwarded = await forwarder.forward(
            identity.user_id, method, path, body=body, query=query.multi_items() if query else None
        )
        if status_code is not None:
            return Response(status_code=status_code)
        return self._to_response(forwarded)

    def _to_response(self, forwarded: ForwardedResponse) -> Response:
        payload = forwarded.payload
        if isinstance(payload, (dict, list)):
            return JSONResponse(status_code=forwarded.status_code, content=payload, headers=forwarded.headers)
        if payload is None or payload == "" or forwarded.status_code == 204:
            return Response(status_code=forwarded.status_code, headers=forwarded.headers)
        return PlainTextResponse(status_code=forwarded.status_code, content=str(payload), headers=forwarded.headers)

    async def _read_json(self, request: Request) -> Any:
        try:
            return await request.json()
        except ValueError as exc:
            raise ValidationFailedError("Request body must be valid JSON") from exc

    def _path_id(self, value: str) -> str:
        if not value or not value.strip():
            raise ValidationFailedError("Identifier must not be empty")
        return quote(value, safe="")

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report in-process state; upstreams are probed by their own health checks."""
        return {
            "sessions": self.store.count(),
            "activity_subscribers": self.activity_bus.subscriber_count,
        }


def create_app(config: Optional[ServiceConfig] = None,
               transport: Optional[httpx.AsyncBaseTransport] = None):
    """Create FastAPI application."""
    service = GatewayService(config=config, transport=transport)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()

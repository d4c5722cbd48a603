"""
Unit tests for AuthenticatedForwarder.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from service_gateway.app.adapters import OAuth2Grant
from service_gateway.app.domain import AuthenticatedForwarder, ManagementForwarder
from service_gateway.app.sessions import CredentialStore, TokenLifecycleManager
from shared.errors import (
    CredentialUnrenewableError,
    MethodNotSupportedError,
    RefreshFailedError,
    SessionNotFoundError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from shared.test_helpers import FixedClock, make_session, test_data_factory


class TestAuthenticatedForwarder:
    """Test cases for AuthenticatedForwarder."""

    @pytest.fixture
    def clock(self):
        return FixedClock()

    @pytest.fixture
    def store(self):
        return CredentialStore()

    @pytest.fixture
    def identity_provider(self):
        return AsyncMock()

    @pytest.fixture
    def sent(self):
        return []

    @pytest.fixture
    def orion(self, sent):
        """Context broker double; tests swap ``orion.response`` as needed."""

        class Orion:
            response = httpx.Response(200, json=[])

            def handle(self, request):
                sent.append(request)
                return self.response

        return Orion()

    @pytest.fixture
    def forwarder(self, store, identity_provider, clock, orion):
        lifecycle = TokenLifecycleManager(store, identity_provider, clock=clock)
        return AuthenticatedForwarder(
            store,
            lifecycle,
            "http://pep-proxy:1027",
            fiware_service="openiot",
            fiware_service_path="/",
            transport=httpx.MockTransport(orion.handle),
        )

    @pytest.fixture
    def alice(self):
        return test_data_factory.create_test_users()[0]

    def test_build_headers(self, forwarder):
        headers = forwarder.build_headers("GET", "token-1")
        assert headers == {
            "X-Auth-Token": "token-1",
            "Fiware-Service": "openiot",
            "Fiware-ServicePath": "/",
        }
        assert forwarder.build_headers("POST", "token-1")["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_forward_get_uses_access_credential(self, forwarder, store, clock, orion, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock()))
        orion.response = httpx.Response(200, json=[{"id": "Sensor1", "type": "Sensor"}])

        result = await forwarder.forward(alice.user_id, "GET", "/v2/entities", query={"type": "Sensor"})

        assert result.status_code == 200
        assert result.payload == [{"id": "Sensor1", "type": "Sensor"}]
        request = sent[0]
        assert str(request.url) == "http://pep-proxy:1027/v2/entities?type=Sensor"
        assert request.headers["X-Auth-Token"] == "access-token-1"
        assert request.headers["Fiware-Service"] == "openiot"
        assert request.headers["Fiware-ServicePath"] == "/"
        assert "Content-Type" not in request.headers

    @pytest.mark.asyncio
    async def test_forward_post_sends_json_body(self, forwarder, store, clock, orion, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock()))
        orion.response = httpx.Response(201, headers={"Location": "/v2/entities/Sensor1?type=Sensor"})
        entity = test_data_factory.create_test_entities()[0]

        result = await forwarder.forward(alice.user_id, "POST", "/v2/entities", body=entity)

        assert result.status_code == 201
        assert result.payload is None
        assert result.headers == {"Location": "/v2/entities/Sensor1?type=Sensor"}
        assert json.loads(sent[0].content) == entity
        assert sent[0].headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_downstream_error_passes_through(self, forwarder, store, clock, orion, alice):
        store.create(alice.user_id, make_session(alice, now=clock()))
        body = {"error": "NotFound", "description": "The requested entity has not been found"}
        orion.response = httpx.Response(404, json=body)

        with pytest.raises(UpstreamRejectedError) as exc_info:
            await forwarder.forward(alice.user_id, "GET", "/v2/entities/missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.body == body

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_session(self, forwarder, sent):
        with pytest.raises(SessionNotFoundError):
            await forwarder.forward("nobody", "GET", "/v2/entities")
        assert sent == []

    @pytest.mark.asyncio
    async def test_unsupported_method(self, forwarder, sent):
        with pytest.raises(MethodNotSupportedError):
            await forwarder.forward("nobody", "TRACE", "/v2/entities")
        assert sent == []

    @pytest.mark.asyncio
    async def test_expired_access_is_refreshed_before_forwarding(self, forwarder, store, identity_provider,
                                                                 clock, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock(), access_ttl=-1))
        identity_provider.refresh_oauth2_token.return_value = OAuth2Grant(
            access_token="access-2",
            refresh_token="refresh-2",
            expires_in=3600,
            expires_at=clock() + timedelta(hours=1),
        )

        await forwarder.forward(alice.user_id, "GET", "/v2/entities")

        assert sent[0].headers["X-Auth-Token"] == "access-2"

    @pytest.mark.asyncio
    async def test_refresh_failure_stops_forwarding(self, forwarder, store, identity_provider, clock, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock(), access_ttl=-1))
        identity_provider.refresh_oauth2_token.side_effect = RefreshFailedError()

        with pytest.raises(RefreshFailedError):
            await forwarder.forward(alice.user_id, "GET", "/v2/entities")

        assert sent == []

    @pytest.mark.asyncio
    async def test_unrenewable_session(self, forwarder, store, identity_provider, clock, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock(), access_ttl=-1, refresh_token=None))

        with pytest.raises(CredentialUnrenewableError):
            await forwarder.forward(alice.user_id, "GET", "/v2/entities")

        identity_provider.refresh_oauth2_token.assert_not_called()
        assert sent == []

    @pytest.mark.asyncio
    async def test_transport_failure(self, store, identity_provider, clock, alice):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        lifecycle = TokenLifecycleManager(store, identity_provider, clock=clock)
        forwarder = AuthenticatedForwarder(store, lifecycle, "http://pep-proxy:1027",
                                           transport=httpx.MockTransport(handler))
        store.create(alice.user_id, make_session(alice, now=clock()))

        with pytest.raises(UpstreamUnavailableError):
            await forwarder.forward(alice.user_id, "GET", "/v2/entities")

    @pytest.mark.asyncio
    async def test_repeated_query_keys(self, forwarder, store, clock, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock()))

        await forwarder.forward(alice.user_id, "GET", "/v2/entities", query=[("attrs", "a"), ("attrs", "b")])

        assert sent[0].url.params.get_list("attrs") == ["a", "b"]


class TestManagementForwarder:
    """Test cases for ManagementForwarder."""

    @pytest.fixture
    def clock(self):
        return FixedClock()

    @pytest.fixture
    def store(self):
        return CredentialStore()

    @pytest.fixture
    def identity_provider(self):
        return AsyncMock()

    @pytest.fixture
    def sent(self):
        return []

    @pytest.fixture
    def management(self, store, identity_provider, clock, sent):
        def handler(request):
            sent.append(request)
            return httpx.Response(200, json={"users": []})

        lifecycle = TokenLifecycleManager(store, identity_provider, clock=clock)
        return ManagementForwarder(store, lifecycle, "http://keyrock:3005", transport=httpx.MockTransport(handler))

    @pytest.fixture
    def alice(self):
        return test_data_factory.create_test_users()[0]

    @pytest.mark.asyncio
    async def test_uses_management_credential(self, management, store, clock, sent, alice):
        store.create(alice.user_id, make_session(alice, now=clock()))

        result = await management.forward(alice.user_id, "GET", "/v1/users")

        assert result.payload == {"users": []}
        assert str(sent[0].url) == "http://keyrock:3005/v1/users"
        assert sent[0].headers["X-Auth-Token"] == "management-token-1"
        assert "Fiware-Service" not in sent[0].headers

    @pytest.mark.asyncio
    async def test_expired_management_credential_is_never_renewed(
        self, management, store, identity_provider, clock, sent, alice
    ):
        store.create(alice.user_id, make_session(alice, now=clock(), management_ttl=0))

        with pytest.raises(CredentialUnrenewableError):
            await management.forward(alice.user_id, "GET", "/v1/users")

        identity_provider.refresh_oauth2_token.assert_not_called()
        assert sent == []

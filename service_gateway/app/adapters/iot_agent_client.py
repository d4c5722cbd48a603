"""
IoT Agent south port client for Gateway.
"""

from typing import Any, Dict, Optional

import httpx

from shared.errors import UpstreamRejectedError, UpstreamUnavailableError
from shared.logging import get_logger
from .responses import decode_body


class IoTAgentClient:
    """Sends device measurements to the IoT Agent south port.

    The south port is reached through its PEP proxy when one is configured,
    otherwise it is derived from the north port URL (4041 -> 7896).
    """

    def __init__(
        self,
        iot_agent_url: str,
        south_proxy_url: Optional[str] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.iot_agent_url = iot_agent_url.rstrip("/")
        self.south_proxy_url = south_proxy_url.rstrip("/") if south_proxy_url else None
        self.timeout = timeout
        self._transport = transport
        self.logger = get_logger("gateway.iot_agent_client")

    @property
    def south_port_url(self) -> str:
        if self.south_proxy_url:
            return self.south_proxy_url
        return self.iot_agent_url.replace(":4041", ":7896")

    @property
    def south_proxy_configured(self) -> bool:
        return self.south_proxy_url is not None

    async def send_ultralight(self, api_key: str, device_id: str, data: str,
                              access_token: Optional[str] = None) -> Any:
        """Send an Ultralight 2.0 measurement (``t|25|h|50``)."""
        return await self._send(
            "/iot/d", api_key, device_id, access_token,
            content=data.encode("utf-8"), content_type="text/plain",
        )

    async def send_json(self, api_key: str, device_id: str, data: Dict[str, Any],
                        access_token: Optional[str] = None) -> Any:
        """Send a JSON measurement object."""
        return await self._send(
            "/iot/json", api_key, device_id, access_token,
            json_body=data, content_type="application/json",
        )

    async def _send(self, path: str, api_key: str, device_id: str, access_token: Optional[str], *,
                    content_type: str, content: Optional[bytes] = None,
                    json_body: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"Content-Type": content_type}
        if access_token:
            headers["X-Auth-Token"] = access_token

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.south_port_url}{path}",
                    params={"k": api_key, "i": device_id},
                    headers=headers,
                    content=content,
                    json=json_body,
                )
        except httpx.TransportError as e:
            self.logger.error("IoT Agent south port unreachable", path=path, error=str(e))
            raise UpstreamUnavailableError("iot-agent", details={"http_error": str(e)})

        payload = decode_body(response)
        if response.is_error:
            self.logger.warning(
                "IoT Agent rejected measurement",
                path=path,
                device_id=device_id,
                status_code=response.status_code,
            )
            raise UpstreamRejectedError("iot-agent", response.status_code, payload)

        self.logger.info("Measurement forwarded", path=path, device_id=device_id)
        return payload or {"success": True}

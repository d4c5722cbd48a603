"""
Adapters package for the Gateway Service.

Contains HTTP client wrappers for downstream dependencies (Keyrock, IoT
Agent south port). These adapters encapsulate:

- Base URLs and request shapes
- Bounded timeouts (no automatic retries)
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .keyrock_client import IssuedToken, KeyrockClient, OAuth2Grant
from .iot_agent_client import IoTAgentClient

__all__ = [
    "IoTAgentClient",
    "IssuedToken",
    "KeyrockClient",
    "OAuth2Grant",
]

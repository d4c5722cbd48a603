"""
Domain utilities for the Gateway Service.

Includes the request authentication gate, login orchestration and the
authenticated forwarders for the context broker and the Keyrock
management API: request processing that does not belong to
adapters or transport-specific layers.
"""

from .auth_middleware import AuthGate
from .bearer import BearerTokenService
from .forwarder import AuthenticatedForwarder, ForwardedResponse
from .login import LoginOrchestrator, LoginResult
from .management import ManagementForwarder

__all__ = [
    "AuthGate",
    "AuthenticatedForwarder",
    "BearerTokenService",
    "ForwardedResponse",
    "LoginOrchestrator",
    "LoginResult",
    "ManagementForwarder",
]

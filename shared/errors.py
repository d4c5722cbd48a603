"""
Shared error handling for the FIWARE Access Gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class GatewayException(Exception):
    """Base exception for gateway services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(GatewayException):
    """Bearer token missing, malformed or invalid."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(GatewayException):
    """Authenticated caller lacks the required role."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class InvalidCredentialsError(GatewayException):
    """The identity provider rejected the user's primary credentials."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__("INVALID_CREDENTIALS", message)


class IdentityProviderUnavailableError(GatewayException):
    """The identity provider could not be reached or failed unexpectedly."""

    status_code = 503

    def __init__(self, message: str = "Identity provider unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("IDENTITY_PROVIDER_UNAVAILABLE", message, details)


class SessionNotFoundError(GatewayException):
    """No server-side session exists for the bearer identity."""

    status_code = 401

    def __init__(self, message: str = "Session not found, please login again"):
        super().__init__("SESSION_NOT_FOUND", message)


class CredentialUnrenewableError(GatewayException):
    """A held credential expired and there is no way to renew it."""

    status_code = 401

    def __init__(self, message: str = "Token expired, please login again"):
        super().__init__("CREDENTIAL_UNRENEWABLE", message)


class RefreshFailedError(GatewayException):
    """The identity provider refused to refresh an expired credential."""

    status_code = 401

    def __init__(self, message: str = "Failed to refresh token, please login again"):
        super().__init__("REFRESH_FAILED", message)


class UpstreamUnavailableError(GatewayException):
    """A downstream service produced no response at all."""

    status_code = 503

    def __init__(self, service: str, message: str = "Service unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_UNAVAILABLE", f"{service}: {message}", details)
        self.service = service


class UpstreamRejectedError(GatewayException):
    """A downstream service answered with an error status.

    The downstream status code and body are kept so they can be handed back to
    the caller untouched.
    """

    def __init__(self, service: str, status_code: int, body: Any = None):
        super().__init__(
            "UPSTREAM_REJECTED",
            f"{service}: request rejected with status {status_code}",
            status_code=status_code,
        )
        self.service = service
        self.body = body


class MethodNotSupportedError(GatewayException):
    """HTTP verb outside the set the forwarder knows how to dispatch."""

    status_code = 405

    def __init__(self, method: str):
        super().__init__("METHOD_NOT_SUPPORTED", f"Method not supported: {method}", {"method": method})


class ValidationFailedError(GatewayException):
    """Malformed request shape, rejected before reaching the core."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_FAILED", message, details)

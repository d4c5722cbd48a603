"""
Request authentication gate for Gateway.
"""

from fastapi import Request

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger, set_user_context
from ..sessions.models import Identity
from .bearer import BearerTokenService


class AuthGate:
    """Resolves the bearer token on inbound requests to a user identity.

    Verification is purely local: no session lookup happens here, so a valid
    token for a logged-out user still authenticates and the session check is
    left to the handler.
    """

    def __init__(self, bearer_tokens: BearerTokenService):
        self.bearer_tokens = bearer_tokens
        self.logger = get_logger("gateway.auth_gate")

    async def authenticate_request(self, request: Request) -> Identity:
        """Authenticate incoming request with its bearer token."""
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            raise AuthenticationError("Authorization header required")

        if not auth_header.startswith("Bearer "):
            raise AuthenticationError("Invalid authorization header format")

        token = auth_header[7:].strip()
        if not token:
            raise AuthenticationError("Authorization header contained empty bearer token")

        try:
            identity = self.bearer_tokens.verify(token)
        except AuthenticationError as e:
            self.logger.warning("Bearer token rejected", error=e.message)
            raise

        # Cached on the request for the activity log middleware.
        request.state.identity = identity
        set_user_context(identity.user_id)
        return identity

    def require_role(self, identity: Identity, role: str) -> None:
        """Reject callers that do not hold the given role."""
        if role not in identity.roles:
            self.logger.warning("Role check failed", user_id=identity.user_id, required_role=role)
            raise AuthorizationError(
                f"Missing required role '{role}'",
                details={"required_role": role},
            )

"""
Keyrock management API access on behalf of a signed-in user.
"""

from typing import Dict

from ..sessions.models import CredentialFamily
from .forwarder import BODY_METHODS, AuthenticatedForwarder


class ManagementForwarder(AuthenticatedForwarder):
    """Forwards user and role administration calls to Keyrock.

    Calls carry the user's management credential, obtained at login. That
    credential cannot be renewed: once it lapses the user must sign in again
    and nothing is sent upstream.
    """

    service_name = "keyrock"
    credential_family = CredentialFamily.MANAGEMENT

    def build_headers(self, method: str, access_token: str) -> Dict[str, str]:
        headers = {"X-Auth-Token": access_token}
        if method in BODY_METHODS:
            headers["Content-Type"] = "application/json"
        return headers

"""
Authentication and authorization dependencies
"""

from typing import Optional

from fastapi import Depends, Header, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from haunted.auth import ACCESS_TOKEN_TYPE
from haunted.context import HauntedContext, get_context

security = HTTPBearer(auto_error=False)


class IftttError(Exception):
    """
    Error rendered in the IFTTT ``{"errors": [...]}`` format.

    ``skip`` marks action errors IFTTT should not retry.
    """

    def __init__(self, status_code: int, message: str, skip: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.skip = skip

    def to_body(self) -> dict:
        error = {"message": self.message}
        if self.skip:
            error["status"] = "SKIP"
        return {"errors": [error]}


async def require_service_key(
    ifttt_service_key: Optional[str] = Header(default=None),
    ctx: HauntedContext = Depends(get_context),
) -> None:
    """
    Validate the ``IFTTT-Service-Key`` header.

    Without a configured key every request is rejected.
    """
    expected = ctx.settings.ifttt_service_key
    if not expected or ifttt_service_key != expected:
        raise IftttError(status.HTTP_401_UNAUTHORIZED, "Invalid service key")


async def get_ifttt_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ctx: HauntedContext = Depends(get_context),
) -> str:
    """
    Validate an IFTTT user access token and return the user id.

    Requires a token issued by this service's OAuth endpoints.
    """
    if not credentials or not credentials.credentials:
        raise IftttError(
            status.HTTP_401_UNAUTHORIZED, "Missing authentication credentials"
        )

    token_data = ctx.issuer.verify_token(credentials.credentials, ACCESS_TOKEN_TYPE)

    if not token_data:
        raise IftttError(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token")

    return token_data.subject_id


def directive_bearer_token(
    directive: dict,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """
    Find the bearer token of an Alexa directive.

    Alexa puts it in ``endpoint.scope`` (or ``payload.scope`` for
    discovery); an Authorization header is accepted as well.
    """
    for section in ("endpoint", "payload"):
        scope = (directive.get(section) or {}).get("scope") or {}
        if scope.get("type") == "BearerToken" and scope.get("token"):
            return scope["token"]

    if credentials and credentials.credentials:
        return credentials.credentials
    return None

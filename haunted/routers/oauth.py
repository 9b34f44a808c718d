"""
OAuth routes for connecting the IFTTT service.

Authorization-code grant for the single demo user:
1. IFTTT sends the user to /oauth/authorize
2. The request is approved immediately and redirected back with a code
3. IFTTT redeems the code (once) at /oauth/token
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Query, status
from fastapi.responses import JSONResponse, RedirectResponse

from haunted.auth import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    get_token_expiry_seconds,
)
from haunted.config import Settings
from haunted.context import HauntedContext, get_context
from haunted.models import OAuthTokenResponse

router = APIRouter(prefix="/oauth", tags=["OAuth"])
logger = logging.getLogger(__name__)


def _oauth_error(error: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error})


def _client_allowed(settings: Settings, client_id: Optional[str]) -> bool:
    return not settings.ifttt_client_id or client_id == settings.ifttt_client_id


def _authorize(
    ctx: HauntedContext,
    client_id: Optional[str],
    redirect_uri: Optional[str],
    state: Optional[str],
    response_type: str,
):
    if not redirect_uri:
        return _oauth_error("invalid_request")
    if response_type != "code":
        return _oauth_error("unsupported_response_type")
    if not _client_allowed(ctx.settings, client_id):
        return _oauth_error("unauthorized_client")

    code = ctx.auth_codes.issue(client_id=client_id, redirect_uri=redirect_uri)
    params = {"code": code}
    if state:
        params["state"] = state

    separator = "&" if "?" in redirect_uri else "?"
    logger.info("Authorization granted to demo user")
    return RedirectResponse(
        url=f"{redirect_uri}{separator}{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/authorize")
async def authorize(
    client_id: Optional[str] = Query(default=None),
    redirect_uri: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    response_type: str = Query(default="code"),
    ctx: HauntedContext = Depends(get_context),
):
    """Auto-approve the authorization request and redirect with a code."""
    return _authorize(ctx, client_id, redirect_uri, state, response_type)


@router.post("/authorize")
async def authorize_form(
    client_id: Optional[str] = Form(default=None),
    redirect_uri: Optional[str] = Form(default=None),
    state: Optional[str] = Form(default=None),
    response_type: str = Form(default="code"),
    ctx: HauntedContext = Depends(get_context),
):
    return _authorize(ctx, client_id, redirect_uri, state, response_type)


@router.post("/token")
async def token(
    grant_type: str = Form(...),
    code: Optional[str] = Form(default=None),
    refresh_token: Optional[str] = Form(default=None),
    redirect_uri: Optional[str] = Form(default=None),
    client_id: Optional[str] = Form(default=None),
    client_secret: Optional[str] = Form(default=None),
    ctx: HauntedContext = Depends(get_context),
):
    """
    Token endpoint.

    Supports ``authorization_code`` (codes are single-use) and
    ``refresh_token`` grants.
    """
    settings = ctx.settings
    if not _client_allowed(settings, client_id) or (
        settings.ifttt_client_secret and client_secret != settings.ifttt_client_secret
    ):
        return _oauth_error("invalid_client", status.HTTP_401_UNAUTHORIZED)

    if grant_type == "authorization_code":
        entry = ctx.auth_codes.consume(code) if code else None
        if entry is None:
            return _oauth_error("invalid_grant")
        if entry.redirect_uri and redirect_uri and entry.redirect_uri != redirect_uri:
            return _oauth_error("invalid_grant")
        user_id = entry.user_id

    elif grant_type == "refresh_token":
        token_data = (
            ctx.issuer.verify_token(refresh_token, REFRESH_TOKEN_TYPE)
            if refresh_token
            else None
        )
        if token_data is None:
            return _oauth_error("invalid_grant")
        user_id = token_data.subject_id

    else:
        return _oauth_error("unsupported_grant_type")

    response = OAuthTokenResponse(
        access_token=ctx.issuer.create_access_token(user_id),
        expires_in=get_token_expiry_seconds(ACCESS_TOKEN_TYPE),
        refresh_token=ctx.issuer.create_refresh_token(user_id),
    )
    return JSONResponse(content=response.model_dump())

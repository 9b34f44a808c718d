"""
Alexa routes - Smart Home skill endpoint and account-linking grant
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from haunted.alexa_service import (
    build_accept_grant_response,
    build_discovery_response,
    build_error_response,
    build_power_response,
    build_state_report,
)
from haunted.context import HauntedContext, get_context
from haunted.dependencies import directive_bearer_token, security
from haunted.sensors import SENSOR_CONFIG, effect_for_endpoint

router = APIRouter(tags=["Alexa"])
logger = logging.getLogger(__name__)


def _unsupported() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "UNSUPPORTED_OPERATION"},
    )


def _unauthorized(directive: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=build_error_response(
            directive,
            "INVALID_AUTHORIZATION_CREDENTIAL",
            "Invalid or expired access token",
        ),
    )


async def _authorized(
    ctx: HauntedContext,
    directive: dict,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> bool:
    token = directive_bearer_token(directive, credentials)
    if not token:
        return False
    return await ctx.alexa.validate_access_token(token)


async def accept_grant(ctx: HauntedContext, directive: dict) -> JSONResponse:
    """
    Exchange the AcceptGrant code for Event Gateway tokens and store them.

    Any failure is answered with an Alexa.Authorization ErrorResponse.
    """
    header = directive.get("header") or {}
    payload = directive.get("payload") or {}
    code = (payload.get("grant") or {}).get("code")
    grantee_token = (payload.get("grantee") or {}).get("token")

    if header.get("name") != "AcceptGrant" or not code or not grantee_token:
        logger.error("Grant failed: malformed AcceptGrant directive")
        return _grant_failed(directive)

    success, tokens, error = await ctx.alexa.exchange_grant_code(code)
    if not success or tokens is None:
        logger.error(f"Grant failed: {error}")
        return _grant_failed(directive)

    await ctx.tokens.store_event_gateway_token(
        grantee_token,
        tokens["access_token"],
        tokens.get("refresh_token"),
    )
    return JSONResponse(content=build_accept_grant_response(directive))


def _grant_failed(directive: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=build_error_response(
            directive,
            "ACCEPT_GRANT_FAILED",
            "Token exchange failed",
            namespace="Alexa.Authorization",
        ),
    )


@router.post("/alexa/smarthome")
async def smart_home(
    body: Dict[str, Any] = Body(...),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ctx: HauntedContext = Depends(get_context),
) -> JSONResponse:
    """
    Alexa Smart Home skill endpoint.

    Handles Discovery (unauthenticated), ReportState and PowerController
    (bearer token required) and Authorization.AcceptGrant.
    """
    directive = body.get("directive")
    if not isinstance(directive, dict):
        return _unsupported()

    header = directive.get("header") or {}
    if not isinstance(header, dict):
        return _unsupported()
    namespace = header.get("namespace")
    name = header.get("name")
    logger.info(f"Alexa Smart Home request: {namespace}.{name}")

    try:
        if namespace == "Alexa.Discovery" and name == "Discover":
            response = build_discovery_response(directive, list(SENSOR_CONFIG.values()))
            logger.info(f"Prepared {len(SENSOR_CONFIG)} virtual contact sensors")
            return JSONResponse(content=response)

        if namespace == "Alexa.Authorization" and name == "AcceptGrant":
            return await accept_grant(ctx, directive)

        if namespace == "Alexa" and name == "ReportState":
            if not await _authorized(ctx, directive, credentials):
                return _unauthorized(directive)
            endpoint_id = (directive.get("endpoint") or {}).get("endpointId", "")
            logger.info(f"State report requested for: {endpoint_id}")
            return JSONResponse(
                content=build_state_report(directive, ctx.sensors.get(endpoint_id))
            )

        if namespace == "Alexa.PowerController" and name in ("TurnOn", "TurnOff"):
            if not await _authorized(ctx, directive, credentials):
                return _unauthorized(directive)
            return await _power_control(ctx, directive, name)

    except Exception:
        logger.exception(f"Error handling {namespace}.{name}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=build_error_response(
                directive, "INTERNAL_ERROR", "Internal server error"
            ),
        )

    return _unsupported()


async def _power_control(
    ctx: HauntedContext,
    directive: dict,
    name: str,
) -> JSONResponse:
    """Turning a sensor endpoint "on" fires its effect."""
    endpoint_id = (directive.get("endpoint") or {}).get("endpointId", "")
    effect = effect_for_endpoint(endpoint_id)
    if effect is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=build_error_response(
                directive, "NO_SUCH_ENDPOINT", f"Unknown endpoint: {endpoint_id}"
            ),
        )

    if name == "TurnOn":
        await ctx.dispatcher.trigger_effect(effect)
        return JSONResponse(content=build_power_response(directive, "ON"))
    return JSONResponse(content=build_power_response(directive, "OFF"))


@router.post("/api/alexa/handle-grant")
async def handle_grant(
    body: Dict[str, Any] = Body(...),
    ctx: HauntedContext = Depends(get_context),
) -> JSONResponse:
    """Account-linking grant forwarded by the skill backend."""
    directive = body.get("directive")
    if not isinstance(directive, dict):
        return _grant_failed({})
    try:
        return await accept_grant(ctx, directive)
    except Exception as e:
        logger.error(f"Grant failed: {e}")
        return _grant_failed(directive)

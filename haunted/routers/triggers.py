"""
Trigger routes - called by the video cue player
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from haunted.context import HauntedContext, get_context
from haunted.models import (
    SensorStatesResponse,
    TriggerDirectRequest,
    WebhookTriggerRequest,
    normalize_effect,
)

router = APIRouter(prefix="/api", tags=["Triggers"])
logger = logging.getLogger(__name__)


@router.post("/trigger-direct")
async def trigger_direct(
    request: TriggerDirectRequest,
    x_session_id: Optional[str] = Header(default=None),
    ctx: HauntedContext = Depends(get_context),
) -> JSONResponse:
    """
    Fire an effect on Alexa, IFTTT and local lights at once.

    Always answers 200 for a known effect, even when every path failed;
    ``success`` and the per-path results tell the UI what happened.
    """
    effect = normalize_effect(request.effect)
    if effect is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": f"Unknown effect: {request.effect}"},
        )

    try:
        result = await ctx.dispatcher.trigger_effect(
            effect, session_id=request.session_id or x_session_id
        )
    except Exception:
        logger.exception(f"Trigger {effect.value} failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Internal server error"},
        )

    return JSONResponse(content=result.model_dump(mode="json"))


@router.post("/trigger")
async def trigger_webhook(
    request: WebhookTriggerRequest,
    ctx: HauntedContext = Depends(get_context),
) -> JSONResponse:
    """
    IFTTT Webhooks fallback: forward an event and payload to Maker.

    A known effect name is sent as its ``haunted_<effect>`` event.
    """
    event = request.event
    if not event and request.effect:
        effect = normalize_effect(request.effect)
        if effect is None:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"ok": False, "error": f"Unknown effect: {request.effect}"},
            )
        event = ctx.ifttt.event_name(effect)

    if not event:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"ok": False, "error": "missing event"},
        )

    if not (request.maker_key or ctx.ifttt.configured):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"ok": False, "error": "No Maker key configured"},
        )

    try:
        success, error = await ctx.ifttt.forward_event(
            event, request.payload, maker_key=request.maker_key
        )
    except Exception:
        logger.exception(f"Trigger {event} failed")
        success, error = False, "Unexpected error"

    if not success:
        logger.error(f"Trigger error: {error}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": "Trigger failed"},
        )

    return JSONResponse(content={"ok": True, "via": "webhooks"})


@router.get("/sensor-states", response_model=SensorStatesResponse)
async def sensor_states(
    ctx: HauntedContext = Depends(get_context),
) -> SensorStatesResponse:
    """Current state of every virtual sensor."""
    return SensorStatesResponse(states=ctx.sensors.snapshot())

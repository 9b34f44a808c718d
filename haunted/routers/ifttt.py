"""
IFTTT service routes - the endpoints IFTTT calls on a registered service
"""

import logging

from fastapi import APIRouter, Depends, Response, status

from haunted.auth import DEMO_USER_ID, DEMO_USER_NAME
from haunted.context import HauntedContext, get_context
from haunted.dependencies import IftttError, get_ifttt_user, require_service_key
from haunted.models import IftttActionRequest, IftttTriggerRequest, normalize_effect

router = APIRouter(prefix="/ifttt/v1", tags=["IFTTT"])
logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_LIMIT = 50


@router.get("/status", dependencies=[Depends(require_service_key)])
async def service_status() -> Response:
    """Health check used by IFTTT. Empty 200 when the service key matches."""
    return Response(status_code=status.HTTP_200_OK)


@router.post("/test/setup", dependencies=[Depends(require_service_key)])
async def test_setup(ctx: HauntedContext = Depends(get_context)) -> dict:
    """Hand IFTTT's endpoint tests a token and sample field values."""
    return {
        "data": {
            "accessToken": ctx.issuer.create_access_token(DEMO_USER_ID),
            "samples": {
                "actions": {"run_effect": {"effect": "blackout"}},
                "actionRecordSkipping": {"run_effect": {"effect": "not_an_effect"}},
                "triggers": {"effect_requested": {}},
            },
        }
    }


@router.get("/user/info")
async def user_info(user_id: str = Depends(get_ifttt_user)) -> dict:
    return {"data": {"id": user_id, "name": DEMO_USER_NAME}}


@router.post("/actions/run_effect")
async def run_effect(
    request: IftttActionRequest,
    _: str = Depends(get_ifttt_user),
    ctx: HauntedContext = Depends(get_context),
) -> dict:
    """
    Action: fire an effect.

    Unknown effects are rejected with a SKIP error so IFTTT does not retry.
    """
    raw = request.actionFields.get("effect")
    effect = normalize_effect(raw)
    if effect is None:
        raise IftttError(
            status.HTTP_400_BAD_REQUEST, f"Unknown effect: {raw}", skip=True
        )

    result = await ctx.dispatcher.trigger_effect(effect)
    logger.info(f"IFTTT action run_effect {effect.value}: success={result.success}")
    return {"data": [{"id": result.event_id}]}


@router.post("/triggers/effect_requested")
async def effect_requested(
    request: IftttTriggerRequest,
    _: str = Depends(get_ifttt_user),
    ctx: HauntedContext = Depends(get_context),
) -> dict:
    """Trigger: the most recent requested effects, newest first."""
    limit = DEFAULT_TRIGGER_LIMIT if request.limit is None else request.limit
    events = ctx.events.recent(limit)
    return {"data": [event.to_ifttt() for event in events]}

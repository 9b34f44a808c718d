"""
Local light routes - per-session discovery of Kasa/Tapo lights
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from haunted.context import HauntedContext, get_context
from haunted.models import LightDiscoveryResponse

router = APIRouter(prefix="/api/lights", tags=["Lights"])


@router.post("/discover", response_model=LightDiscoveryResponse)
async def discover_lights(
    x_session_id: Optional[str] = Header(default=None),
    ctx: HauntedContext = Depends(get_context),
) -> LightDiscoveryResponse:
    """
    Scan the local network for lights and remember them for this session.

    A new session id is issued when the caller has none; it must be sent
    back as ``X-Session-Id`` (or ``session_id``) on later triggers.
    """
    session_id = x_session_id or uuid.uuid4().hex
    lights = await ctx.lights.discover(session_id)
    return LightDiscoveryResponse(session_id=session_id, lights=lights)


@router.get("", response_model=LightDiscoveryResponse)
async def list_lights(
    x_session_id: Optional[str] = Header(default=None),
    ctx: HauntedContext = Depends(get_context),
) -> LightDiscoveryResponse:
    if not x_session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Session-Id header required",
        )
    return LightDiscoveryResponse(
        session_id=x_session_id, lights=ctx.lights.lights(x_session_id)
    )


@router.delete("", status_code=204)
async def forget_lights(
    x_session_id: Optional[str] = Header(default=None),
    ctx: HauntedContext = Depends(get_context),
) -> None:
    """Discard the lights discovered by this session."""
    if x_session_id:
        await ctx.lights.forget(x_session_id)

"""
Debug routes - token and process introspection
"""

import os
import time

from fastapi import APIRouter, Depends, Request

from haunted.context import HauntedContext, get_context

router = APIRouter(prefix="/debug", tags=["Debug"])


@router.get("/tokens")
async def debug_tokens(ctx: HauntedContext = Depends(get_context)) -> dict:
    """Counts of stored Alexa tokens (never the tokens themselves)."""
    info = await ctx.tokens.token_info()
    return info.model_dump()


@router.get("/health")
async def debug_health(
    request: Request,
    ctx: HauntedContext = Depends(get_context),
) -> dict:
    info = await ctx.tokens.token_info()
    return {
        "status": "ok",
        "pid": os.getpid(),
        "uptime": time.monotonic() - request.app.state.started_at,
        "sensor_states": ctx.sensors.snapshot(),
        "events_recorded": len(ctx.events),
        **info.model_dump(),
    }

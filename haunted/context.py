"""
Application context - every stateful component of a running service.

Built once per application start (FastAPI lifespan) and torn down on
shutdown, so each test app gets fresh state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from redis.asyncio import Redis

from haunted.alexa_service import AlexaService
from haunted.auth import AuthorizationCodeStore, TokenIssuer
from haunted.config import Settings
from haunted.dispatcher import EffectDispatcher
from haunted.events import EffectEventLog
from haunted.ifttt_service import IftttService
from haunted.lights import LightRegistry
from haunted.sensors import SensorStateRegistry
from haunted.token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class HauntedContext:
    settings: Settings
    sensors: SensorStateRegistry
    tokens: TokenManager
    alexa: AlexaService
    ifttt: IftttService
    lights: LightRegistry
    events: EffectEventLog
    dispatcher: EffectDispatcher
    issuer: TokenIssuer
    auth_codes: AuthorizationCodeStore

    async def close(self) -> None:
        await self.sensors.close()
        await self.lights.close()
        await self.tokens.close()


def build_context(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    redis: Optional[Redis] = None,
) -> HauntedContext:
    """
    Wire up all components from settings.

    Args:
        settings: Service configuration.
        transport: httpx transport shared by all outbound HTTP (tests).
        redis: Redis client overriding ``settings.redis_url``.
    """
    if redis is None and settings.redis_url:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("Token persistence: Redis")
    elif redis is None:
        logger.info("Token persistence: memory only (REDIS_URL not set)")

    alexa = AlexaService.from_settings(settings, transport=transport)
    tokens = TokenManager(alexa=alexa, redis=redis)
    sensors = SensorStateRegistry(reset_after=settings.sensor_reset_seconds)
    ifttt = IftttService(
        webhook_key=settings.ifttt_webhook_key,
        timeout=settings.ifttt_timeout,
        transport=transport,
    )
    lights = LightRegistry(
        discovery_timeout=settings.light_discovery_seconds,
        username=settings.tapo_username,
        password=settings.tapo_password,
    )
    events = EffectEventLog()

    return HauntedContext(
        settings=settings,
        sensors=sensors,
        tokens=tokens,
        alexa=alexa,
        ifttt=ifttt,
        lights=lights,
        events=events,
        dispatcher=EffectDispatcher(
            sensors=sensors,
            tokens=tokens,
            alexa=alexa,
            ifttt=ifttt,
            lights=lights,
            events=events,
        ),
        issuer=TokenIssuer(settings.session_secret),
        auth_codes=AuthorizationCodeStore(),
    )


def get_context(request: Request) -> HauntedContext:
    """
    Dependency that provides the running application's context.

    Usage:
        @router.get("/example")
        def example(ctx: HauntedContext = Depends(get_context)):
            ...
    """
    return request.app.state.context

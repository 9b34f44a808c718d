"""
Tests for the effect dispatcher
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from haunted.dispatcher import EffectDispatcher
from haunted.events import EffectEventLog
from haunted.ifttt_service import IftttService
from haunted.lights import LightRegistry
from haunted.models import ChannelResult, DetectionState, Effect
from haunted.sensors import SensorStateRegistry

from conftest import (
    GATEWAY_HOST,
    GATEWAY_PATH,
    LWA_HOST,
    LWA_TOKEN_PATH,
    MAKER_HOST,
    WEBHOOK_KEY,
)

BLACKOUT = "haunted-blackout-sensor"


@pytest.fixture
def sensors():
    return SensorStateRegistry(reset_after=0.05)


@pytest.fixture
def make_dispatcher(sensors, alexa, token_manager, upstream):
    def factory(webhook_key=None):
        return EffectDispatcher(
            sensors=sensors,
            tokens=token_manager,
            alexa=alexa,
            ifttt=IftttService(webhook_key, transport=upstream.transport),
            lights=LightRegistry(),
            events=EffectEventLog(),
        )

    return factory


def gateway_states(upstream):
    return [
        (
            r.headers["Authorization"],
            json.loads(r.content)["event"]["payload"]["change"]["properties"][0]["value"],
        )
        for r in upstream.calls(GATEWAY_HOST, GATEWAY_PATH)
    ]


@pytest.mark.asyncio
async def test_nothing_configured_fails_every_channel(make_dispatcher, sensors):
    result = await make_dispatcher().trigger_effect(Effect.BLACKOUT)

    assert result.success is False
    assert result.sensor.success is False
    assert result.ifttt.success is False
    assert result.lights.success is False
    # The sensor still flips so ReportState reflects the trigger
    assert sensors.get(BLACKOUT) == DetectionState.DETECTED
    await sensors.close()


@pytest.mark.asyncio
async def test_broadcasts_to_every_user_and_resets(
    make_dispatcher, sensors, token_manager, upstream
):
    upstream.add(GATEWAY_HOST, GATEWAY_PATH, (202, {}))
    await token_manager.store_event_gateway_token("u1", "token-1", "refresh-1")
    await token_manager.store_event_gateway_token("u2", "token-2", "refresh-2")

    result = await make_dispatcher().trigger_effect(Effect.BLACKOUT)

    assert result.success is True
    assert result.sensor.users_triggered == 2
    assert result.sensor.total_users == 2
    assert sorted(gateway_states(upstream)) == [
        ("Bearer token-1", "DETECTED"),
        ("Bearer token-2", "DETECTED"),
    ]

    await asyncio.sleep(0.2)
    assert sensors.get(BLACKOUT) == DetectionState.NOT_DETECTED
    assert sorted(gateway_states(upstream)[2:]) == [
        ("Bearer token-1", "NOT_DETECTED"),
        ("Bearer token-2", "NOT_DETECTED"),
    ]


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once(
    make_dispatcher, sensors, token_manager, upstream
):
    upstream.add(GATEWAY_HOST, GATEWAY_PATH, (401, {}), (202, {}))
    upstream.add(
        LWA_HOST,
        LWA_TOKEN_PATH,
        (200, {"access_token": "fresh-token", "refresh_token": "refresh-2"}),
    )
    await token_manager.store_event_gateway_token("u1", "stale-token", "refresh-1")

    result = await make_dispatcher().trigger_effect(Effect.FLASH_RED)

    assert result.sensor.success is True
    assert gateway_states(upstream) == [
        ("Bearer stale-token", "DETECTED"),
        ("Bearer fresh-token", "DETECTED"),
    ]
    assert len(upstream.calls(LWA_HOST, LWA_TOKEN_PATH)) == 1
    await sensors.close()


@pytest.mark.asyncio
async def test_failed_refresh_requires_reconnect(
    make_dispatcher, sensors, token_manager, upstream
):
    upstream.add(GATEWAY_HOST, GATEWAY_PATH, (401, {}))
    await token_manager.store_event_gateway_token("u1", "stale-token", None)

    result = await make_dispatcher().trigger_effect(Effect.BLACKOUT)

    assert result.sensor.success is False
    assert result.sensor.reconnect_required is True
    assert result.sensor.users_triggered == 0
    assert len(upstream.calls(GATEWAY_HOST)) == 1
    assert upstream.calls(LWA_HOST) == []
    await sensors.close()


@pytest.mark.asyncio
async def test_one_user_failing_does_not_fail_the_others(
    make_dispatcher, sensors, token_manager, upstream
):
    def gateway(request):
        if request.headers["Authorization"] == "Bearer bad-token":
            return httpx.Response(500)
        return httpx.Response(202)

    await token_manager.store_event_gateway_token("u1", "good-token", None)
    await token_manager.store_event_gateway_token("u2", "bad-token", None)

    dispatcher = make_dispatcher()
    dispatcher.alexa.transport = httpx.MockTransport(gateway)

    result = await dispatcher.trigger_effect(Effect.PLUG_ON)

    assert result.sensor.success is True
    assert result.sensor.users_triggered == 1
    assert result.sensor.total_users == 2
    await sensors.close()


@pytest.mark.asyncio
async def test_ifttt_alone_is_enough(make_dispatcher, sensors, upstream):
    upstream.add(
        MAKER_HOST,
        f"/trigger/haunted_flash_red/with/key/{WEBHOOK_KEY}",
        (200, {}),
    )

    result = await make_dispatcher(webhook_key=WEBHOOK_KEY).trigger_effect(
        Effect.FLASH_RED
    )

    assert result.success is True
    assert result.ifttt.success is True
    assert result.sensor.success is False
    await sensors.close()


@pytest.mark.asyncio
async def test_crashing_channel_is_reported_not_raised(make_dispatcher, sensors):
    dispatcher = make_dispatcher()
    dispatcher.lights.apply_effect = AsyncMock(side_effect=RuntimeError("boom"))

    result = await dispatcher.trigger_effect(Effect.RESET)

    assert result.lights == ChannelResult(success=False, message="Unexpected error: boom")
    await sensors.close()


@pytest.mark.asyncio
async def test_trigger_records_event(make_dispatcher, sensors):
    dispatcher = make_dispatcher()

    result = await dispatcher.trigger_effect(Effect.PLUG_ON)

    event = dispatcher.events.recent(1)[0]
    assert event.effect == Effect.PLUG_ON
    assert event.id == result.event_id
    await sensors.close()

"""
Tests for local light control
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kasa import KasaException, Module

from haunted.lights import LightRegistry, apply_effect_to_device, describe_device
from haunted.models import Effect


def make_light(features=("hsv", "color_temp")):
    light = MagicMock()
    light.has_feature.side_effect = lambda name: name in features
    light.set_hsv = AsyncMock()
    light.set_color_temp = AsyncMock()
    return light


def make_device(host, alias="Lamp", family="SMART.TAPOBULB", light=None):
    modules = {Module.Light: light} if light is not None else {}
    return SimpleNamespace(
        host=host,
        alias=alias,
        model="L530",
        device_type=SimpleNamespace(value="bulb"),
        config=SimpleNamespace(
            connection_type=SimpleNamespace(
                device_family=SimpleNamespace(value=family)
            )
        ),
        modules=modules,
        turn_on=AsyncMock(),
        turn_off=AsyncMock(),
        update=AsyncMock(),
        disconnect=AsyncMock(),
    )


def test_describe_device():
    described = describe_device(make_device("10.0.0.5"))

    assert described.type == "tapo"
    assert described.host == "10.0.0.5"
    assert described.name == "Lamp"
    assert described.kind == "bulb"

    kasa_plug = describe_device(make_device("10.0.0.6", alias=None, family="IOT.SMARTPLUGSWITCH"))
    assert kasa_plug.type == "kasa"
    assert kasa_plug.name == "10.0.0.6"


@pytest.mark.asyncio
async def test_blackout_turns_off():
    dev = make_device("h", light=make_light())

    await apply_effect_to_device(dev, Effect.BLACKOUT)

    dev.turn_off.assert_awaited_once()
    dev.turn_on.assert_not_awaited()


@pytest.mark.asyncio
async def test_flash_red_sets_colour():
    light = make_light()
    dev = make_device("h", light=light)

    await apply_effect_to_device(dev, Effect.FLASH_RED)

    dev.turn_on.assert_awaited_once()
    light.set_hsv.assert_awaited_once_with(0, 100, 100)


@pytest.mark.asyncio
async def test_reset_on_white_only_bulb():
    light = make_light(features=("color_temp",))
    dev = make_device("h", light=light)

    await apply_effect_to_device(dev, Effect.RESET)

    light.set_color_temp.assert_awaited_once_with(2700)
    light.set_hsv.assert_not_awaited()

    # Red is not possible, the bulb is just switched on
    await apply_effect_to_device(dev, Effect.FLASH_RED)
    light.set_hsv.assert_not_awaited()


@pytest.mark.asyncio
async def test_plug_on_switches_plug():
    dev = make_device("h")

    await apply_effect_to_device(dev, Effect.PLUG_ON)

    dev.turn_on.assert_awaited_once()


@pytest.mark.asyncio
async def test_apply_without_lights_fails():
    registry = LightRegistry()

    result = await registry.apply_effect("session", Effect.BLACKOUT)
    assert result.success is False
    assert result.message == "No lights discovered"

    result = await registry.apply_effect(None, Effect.BLACKOUT)
    assert result.success is False


@pytest.mark.asyncio
async def test_discover_and_apply_per_session():
    good = make_device("10.0.0.1")
    broken = make_device("10.0.0.2")
    broken.turn_off.side_effect = KasaException("unreachable")
    registry = LightRegistry()

    with patch(
        "haunted.lights.Discover.discover",
        AsyncMock(return_value={"10.0.0.1": good, "10.0.0.2": broken}),
    ):
        lights = await registry.discover("session-a")

    assert sorted(light.host for light in lights) == ["10.0.0.1", "10.0.0.2"]
    assert registry.lights("session-b") == []

    result = await registry.apply_effect("session-a", Effect.BLACKOUT)
    assert result.success is True
    assert result.devices == {"10.0.0.1": True, "10.0.0.2": False}

    other = await registry.apply_effect("session-b", Effect.BLACKOUT)
    assert other.success is False


@pytest.mark.asyncio
async def test_discovered_devices_are_updated_before_use():
    light = make_light()
    bulb = make_device("10.0.0.1")

    # Like python-kasa, modules only show up once update() has run
    async def populate():
        bulb.modules = {Module.Light: light}

    bulb.update.side_effect = populate
    offline = make_device("10.0.0.2")
    offline.update.side_effect = KasaException("timed out")
    registry = LightRegistry()

    with patch(
        "haunted.lights.Discover.discover",
        AsyncMock(return_value={"10.0.0.1": bulb, "10.0.0.2": offline}),
    ):
        lights = await registry.discover("s")

    bulb.update.assert_awaited_once()
    assert [light.host for light in lights] == ["10.0.0.1"]

    result = await registry.apply_effect("s", Effect.FLASH_RED)

    assert result.devices == {"10.0.0.1": True}
    light.set_hsv.assert_awaited_once_with(0, 100, 100)
    offline.turn_on.assert_not_awaited()


@pytest.mark.asyncio
async def test_discovery_error_returns_nothing():
    registry = LightRegistry()

    with patch(
        "haunted.lights.Discover.discover",
        AsyncMock(side_effect=OSError("network unreachable")),
    ):
        assert await registry.discover("session") == []


@pytest.mark.asyncio
async def test_forget_disconnects():
    dev = make_device("10.0.0.1")
    registry = LightRegistry()
    with patch("haunted.lights.Discover.discover", AsyncMock(return_value={"10.0.0.1": dev})):
        await registry.discover("s")

    await registry.forget("s")

    dev.disconnect.assert_awaited_once()
    assert registry.lights("s") == []


def test_lights_routes(client):
    dev = make_device("10.0.0.9", alias="Porch")

    with patch("haunted.lights.Discover.discover", AsyncMock(return_value={"10.0.0.9": dev})):
        response = client.post("/api/lights/discover")

    assert response.status_code == 200
    body = response.json()
    session_id = body["session_id"]
    assert body["lights"][0]["name"] == "Porch"

    listed = client.get("/api/lights", headers={"X-Session-Id": session_id}).json()
    assert [light["host"] for light in listed["lights"]] == ["10.0.0.9"]

    triggered = client.post(
        "/api/trigger-direct", json={"effect": "blackout", "session_id": session_id}
    ).json()
    assert triggered["success"] is True
    assert triggered["lights"]["devices"] == {"10.0.0.9": True}
    dev.turn_off.assert_awaited_once()

    assert client.delete("/api/lights", headers={"X-Session-Id": session_id}).status_code == 204
    assert client.get("/api/lights", headers={"X-Session-Id": session_id}).json()["lights"] == []


def test_list_lights_requires_session(client):
    assert client.get("/api/lights").status_code == 400

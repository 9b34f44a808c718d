"""
Local Kasa/Tapo light control.

Lights are found by a UDP discovery scan started from the browser and
cached per browser session; effects are then applied to whatever that
session discovered.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from kasa import Credentials, Device, Discover, KasaException, Module

from haunted.models import ChannelResult, DiscoveredLight, Effect

logger = logging.getLogger(__name__)

RED_HSV = (0, 100, 100)
WARM_WHITE_KELVIN = 2700


def _device_family(dev: Device) -> str:
    connection = getattr(getattr(dev, "config", None), "connection_type", None)
    family = getattr(getattr(connection, "device_family", None), "value", "")
    if isinstance(family, str) and family.startswith("SMART."):
        return "tapo"
    return "kasa"


def _device_kind(dev: Device) -> Optional[str]:
    device_type = getattr(dev, "device_type", None)
    return getattr(device_type, "value", None)


def describe_device(dev: Device) -> DiscoveredLight:
    return DiscoveredLight(
        type=_device_family(dev),
        host=dev.host,
        name=dev.alias or dev.host,
        model=dev.model,
        kind=_device_kind(dev),
    )


async def apply_effect_to_device(dev: Device, effect: Effect) -> None:
    """Drive a single device into the look of an effect."""
    if effect == Effect.BLACKOUT:
        await dev.turn_off()
        return

    await dev.turn_on()
    light = dev.modules.get(Module.Light)
    if light is None:
        return

    if effect == Effect.FLASH_RED and light.has_feature("hsv"):
        await light.set_hsv(*RED_HSV)
    elif effect == Effect.RESET and light.has_feature("color_temp"):
        await light.set_color_temp(WARM_WHITE_KELVIN)


class LightRegistry:
    """Per-session cache of discovered local lights."""

    def __init__(
        self,
        discovery_timeout: float = 2.5,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.discovery_timeout = discovery_timeout
        self.credentials = (
            Credentials(username, password) if username and password else None
        )
        self._sessions: Dict[str, Dict[str, Device]] = {}

    def lights(self, session_id: Optional[str]) -> List[DiscoveredLight]:
        if not session_id:
            return []
        return [describe_device(d) for d in self._sessions.get(session_id, {}).values()]

    async def discover(self, session_id: str) -> List[DiscoveredLight]:
        """
        Broadcast a discovery probe and cache what answers for this session.

        Every device is updated before it is cached; devices that fail to
        update are left out. Errors are logged and result in an empty list.
        """
        try:
            found = await Discover.discover(
                discovery_timeout=self.discovery_timeout,
                credentials=self.credentials,
            )
        except (KasaException, OSError) as e:
            logger.error(f"Light discovery failed: {e}")
            return []

        # Modules and state are only populated by update()
        ready: Dict[str, Device] = {}
        for host, dev in found.items():
            try:
                await dev.update()
            except (KasaException, OSError) as e:
                logger.warning(f"Skipping light {host}: {e}")
                continue
            ready[host] = dev

        await self.forget(session_id)
        self._sessions[session_id] = ready
        logger.info(f"Discovered {len(ready)} lights for session {session_id}")
        return self.lights(session_id)

    async def apply_effect(
        self,
        session_id: Optional[str],
        effect: Effect,
    ) -> ChannelResult:
        devices = self._sessions.get(session_id, {}) if session_id else {}
        if not devices:
            return ChannelResult(success=False, message="No lights discovered")

        hosts = list(devices)
        outcomes = await asyncio.gather(
            *(apply_effect_to_device(devices[h], effect) for h in hosts),
            return_exceptions=True,
        )

        results: Dict[str, bool] = {}
        for host, outcome in zip(hosts, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Light {host} failed for {effect.value}: {outcome}")
                results[host] = False
            else:
                results[host] = True

        ok = sum(results.values())
        return ChannelResult(
            success=ok > 0,
            message=f"Applied {effect.value} to {ok}/{len(results)} lights",
            devices=results,
        )

    async def forget(self, session_id: str) -> None:
        """Drop a session's lights and close their connections."""
        devices = self._sessions.pop(session_id, {})
        for dev in devices.values():
            try:
                await dev.disconnect()
            except (KasaException, OSError) as e:
                logger.debug(f"Error disconnecting {dev.host}: {e}")

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.forget(session_id)

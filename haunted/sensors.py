"""
Virtual contact sensors exposed to Alexa, one per effect.

Alexa routines cannot be started by an HTTP call, but they can be started
by a contact sensor opening. Each effect therefore owns a virtual sensor
that flips to DETECTED when the effect fires and falls back to
NOT_DETECTED shortly afterwards.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from haunted.models import DetectionState, Effect, SensorConfig

logger = logging.getLogger(__name__)

SENSOR_CONFIG: Dict[Effect, SensorConfig] = {
    Effect.BLACKOUT: SensorConfig(
        effect=Effect.BLACKOUT,
        endpoint_id="haunted-blackout-sensor",
        friendly_name="Blackout Trigger",
        description="Contact sensor for blackout effect - use in routines",
    ),
    Effect.FLASH_RED: SensorConfig(
        effect=Effect.FLASH_RED,
        endpoint_id="haunted-flash-red-sensor",
        friendly_name="Red Flash Trigger",
        description="Contact sensor for red flash effect - use in routines",
    ),
    Effect.PLUG_ON: SensorConfig(
        effect=Effect.PLUG_ON,
        endpoint_id="haunted-plug-on-sensor",
        friendly_name="Plug On Trigger",
        description="Contact sensor for plug on effect - use in routines",
    ),
    Effect.RESET: SensorConfig(
        effect=Effect.RESET,
        endpoint_id="haunted-reset-sensor",
        friendly_name="Reset Trigger",
        description="Contact sensor for reset effect - use in routines",
    ),
}


def effect_for_endpoint(endpoint_id: str) -> Optional[Effect]:
    """Reverse lookup of the effect owning a sensor endpoint."""
    for effect, config in SENSOR_CONFIG.items():
        if config.endpoint_id == endpoint_id:
            return effect
    return None


ResetCallback = Callable[[str], Awaitable[None]]


class SensorStateRegistry:
    """
    Live DETECTED / NOT_DETECTED state of every virtual sensor.

    Each trigger schedules a reset task; triggering a sensor again before
    the reset fires cancels the pending task and starts a new one, so a
    sensor never flips back early because of an older trigger.
    """

    def __init__(self, reset_after: float = 2.0):
        self.reset_after = reset_after
        self._states: Dict[str, DetectionState] = {
            config.endpoint_id: DetectionState.NOT_DETECTED
            for config in SENSOR_CONFIG.values()
        }
        self._resets: Dict[str, asyncio.Task] = {}

    def get(self, endpoint_id: str) -> DetectionState:
        return self._states.get(endpoint_id, DetectionState.NOT_DETECTED)

    def set(self, endpoint_id: str, state: DetectionState) -> None:
        self._states[endpoint_id] = state

    def snapshot(self) -> Dict[str, DetectionState]:
        return dict(self._states)

    def has_pending_reset(self, endpoint_id: str) -> bool:
        task = self._resets.get(endpoint_id)
        return task is not None and not task.done()

    def trigger(
        self,
        endpoint_id: str,
        on_reset: Optional[ResetCallback] = None,
    ) -> None:
        """
        Mark a sensor DETECTED and schedule its return to NOT_DETECTED.

        Must be called from inside a running event loop.

        Args:
            endpoint_id: Sensor endpoint to trigger.
            on_reset: Awaited after the state has been reset, used to push
                the NOT_DETECTED change report to Alexa.
        """
        self._states[endpoint_id] = DetectionState.DETECTED

        pending = self._resets.pop(endpoint_id, None)
        if pending is not None and not pending.done():
            pending.cancel()
            logger.debug(f"Replaced pending reset for {endpoint_id}")

        self._resets[endpoint_id] = asyncio.create_task(
            self._reset_later(endpoint_id, on_reset)
        )

    async def _reset_later(
        self,
        endpoint_id: str,
        on_reset: Optional[ResetCallback],
    ) -> None:
        await asyncio.sleep(self.reset_after)
        self._states[endpoint_id] = DetectionState.NOT_DETECTED
        # The reset has happened; from here on a new trigger must not cancel
        # the change report that is about to go out.
        if self._resets.get(endpoint_id) is asyncio.current_task():
            del self._resets[endpoint_id]

        if on_reset is None:
            return
        try:
            await on_reset(endpoint_id)
        except Exception as e:
            logger.error(f"Failed to report reset of {endpoint_id}: {e}")

    async def close(self) -> None:
        """Cancel all pending resets (application shutdown)."""
        tasks = [task for task in self._resets.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._resets.clear()

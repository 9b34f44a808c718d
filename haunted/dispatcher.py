"""
Effect dispatcher - fans a triggered effect out to every delivery path.

Each effect is delivered three ways at once:
- Alexa: the effect's virtual contact sensor is opened for every linked
  user, which starts their "when sensor opens" routines
- IFTTT: the ``haunted_<effect>`` Maker Webhooks applet
- Local lights discovered by the caller's browser session

Paths are independent; the trigger succeeds if any of them does.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from haunted.alexa_service import AlexaService
from haunted.events import EffectEventLog
from haunted.ifttt_service import IftttService
from haunted.lights import LightRegistry
from haunted.models import (
    ChannelResult,
    DetectionState,
    Effect,
    TriggerResponse,
)
from haunted.sensors import SENSOR_CONFIG, SensorStateRegistry
from haunted.token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class UserReport:
    """Outcome of pushing one change report to one linked user."""

    success: bool
    reconnect_required: bool = False
    error: Optional[str] = None


class EffectDispatcher:
    def __init__(
        self,
        sensors: SensorStateRegistry,
        tokens: TokenManager,
        alexa: AlexaService,
        ifttt: IftttService,
        lights: LightRegistry,
        events: EffectEventLog,
    ):
        self.sensors = sensors
        self.tokens = tokens
        self.alexa = alexa
        self.ifttt = ifttt
        self.lights = lights
        self.events = events

    async def trigger_effect(
        self,
        effect: Effect,
        session_id: Optional[str] = None,
    ) -> TriggerResponse:
        """
        Fire an effect on every delivery path in parallel.

        Args:
            effect: The effect to fire.
            session_id: Browser session whose discovered lights to drive.

        Returns:
            Aggregated result; ``success`` is true if any path succeeded.
        """
        event = self.events.record(effect)

        sensor_result, ifttt_result, lights_result = await asyncio.gather(
            self._guarded("alexa", self.trigger_sensor(effect)),
            self._guarded("ifttt", self.ifttt.trigger_effect(effect)),
            self._guarded("lights", self.lights.apply_effect(session_id, effect)),
        )

        success = sensor_result.success or ifttt_result.success or lights_result.success
        logger.info(
            f"Effect {effect.value}: alexa={sensor_result.success} "
            f"ifttt={ifttt_result.success} lights={lights_result.success}"
        )

        return TriggerResponse(
            success=success,
            effect=effect,
            sensor=sensor_result,
            ifttt=ifttt_result,
            lights=lights_result,
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_id=event.id,
        )

    async def _guarded(self, channel: str, call) -> ChannelResult:
        try:
            return await call
        except Exception as e:
            logger.exception(f"{channel} channel failed unexpectedly")
            return ChannelResult(success=False, message=f"Unexpected error: {str(e)}")

    async def trigger_sensor(self, effect: Effect) -> ChannelResult:
        """Open the effect's sensor and broadcast it to every linked user."""
        endpoint_id = SENSOR_CONFIG[effect].endpoint_id
        self.sensors.trigger(endpoint_id, on_reset=self._report_reset)

        tokens = await self.tokens.get_all_event_gateway_tokens()
        if not tokens:
            logger.warning("No Event Gateway tokens available")
            return ChannelResult(
                success=False,
                message="No users linked",
                users_triggered=0,
                total_users=0,
            )

        logger.info(f"Broadcasting {effect.value} to {len(tokens)} users")
        reports = await self.broadcast(endpoint_id, DetectionState.DETECTED, tokens)
        triggered = sum(1 for r in reports if r.success)
        reconnect = any(r.reconnect_required for r in reports)

        return ChannelResult(
            success=triggered > 0,
            message=f"Triggered {effect.value} for {triggered}/{len(tokens)} users",
            users_triggered=triggered,
            total_users=len(tokens),
            reconnect_required=reconnect,
        )

    async def _report_reset(self, endpoint_id: str) -> None:
        tokens = await self.tokens.get_all_event_gateway_tokens()
        if tokens:
            await self.broadcast(endpoint_id, DetectionState.NOT_DETECTED, tokens)

    async def broadcast(
        self,
        endpoint_id: str,
        state: DetectionState,
        tokens: List[str],
    ) -> List[UserReport]:
        return list(
            await asyncio.gather(
                *(self.report_to_user(endpoint_id, state, t) for t in tokens)
            )
        )

    async def report_to_user(
        self,
        endpoint_id: str,
        state: DetectionState,
        access_token: str,
    ) -> UserReport:
        """
        Send one change report, refreshing the token at most once on 401.

        A failed refresh marks the user as needing to re-link the skill.
        """
        success, status, error = await self.alexa.send_change_report(
            endpoint_id, state, access_token
        )
        if success:
            return UserReport(success=True)

        if status != 401:
            logger.error(f"Failed to send change report for {endpoint_id}: {error}")
            return UserReport(success=False, error=error)

        logger.info("Access token expired, attempting refresh...")
        new_token = await self.tokens.refresh_access_token(access_token)
        if new_token is None:
            logger.warning("Token refresh failed; user must reconnect the skill")
            return UserReport(
                success=False,
                reconnect_required=True,
                error="Reconnect required",
            )

        success, status, error = await self.alexa.send_change_report(
            endpoint_id, state, new_token
        )
        if success:
            logger.info(f"Change report sent after token refresh for {endpoint_id}")
            return UserReport(success=True)

        logger.error(f"Retry after refresh failed for {endpoint_id}: {error}")
        return UserReport(success=False, reconnect_required=status == 401, error=error)

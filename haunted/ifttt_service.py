"""
IFTTT Maker Webhooks client.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple
from urllib.parse import quote

import httpx

from haunted.models import ChannelResult, Effect

logger = logging.getLogger(__name__)

MAKER_BASE_URL = "https://maker.ifttt.com/trigger"
EVENT_PREFIX = "haunted_"


class IftttService:
    """Fires Maker Webhooks applets for effects."""

    def __init__(
        self,
        webhook_key: Optional[str],
        timeout: float = 3.0,
        forward_timeout: float = 4.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_key = webhook_key
        self.timeout = timeout
        self.forward_timeout = forward_timeout
        self.transport = transport
        # Effects with a webhook call still in flight
        self._in_progress: Set[Effect] = set()

    @property
    def configured(self) -> bool:
        return bool(self.webhook_key)

    def event_name(self, effect: Effect) -> str:
        return f"{EVENT_PREFIX}{effect.value}"

    async def trigger_effect(self, effect: Effect) -> ChannelResult:
        """
        Fire the ``haunted_<effect>`` applet.

        Timeouts and non-2xx answers count as a failed leg; nothing is
        retried. A second call for an effect whose webhook is still in
        flight is skipped.
        """
        if not self.webhook_key:
            logger.warning("IFTTT_WEBHOOK_KEY not configured")
            return ChannelResult(success=False, message="IFTTT not configured")

        if effect in self._in_progress:
            logger.info(f"IFTTT {effect.value} already in progress, skipping")
            return ChannelResult(success=False, message="Already in progress")

        self._in_progress.add(effect)
        url = f"{MAKER_BASE_URL}/{self.event_name(effect)}/with/key/{self.webhook_key}"
        body = {
            "value1": effect.value,
            "value2": "haunted_trigger",
            "value3": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(url, json=body)

            if response.is_success:
                logger.info(f"IFTTT {effect.value} triggered successfully")
                return ChannelResult(success=True, message="IFTTT triggered")
            logger.error(
                f"IFTTT {effect.value} failed with status {response.status_code}"
            )
            return ChannelResult(
                success=False,
                message=f"IFTTT returned status {response.status_code}",
            )

        except httpx.TimeoutException:
            logger.error(f"IFTTT {effect.value} timeout after {self.timeout}s")
            return ChannelResult(success=False, message="IFTTT request timed out")
        except httpx.RequestError as e:
            logger.error(f"IFTTT {effect.value} failed: {e}")
            return ChannelResult(success=False, message=f"Connection error: {str(e)}")
        finally:
            self._in_progress.discard(effect)

    async def forward_event(
        self,
        event: str,
        payload: Optional[Dict[str, Any]],
        maker_key: Optional[str] = None,
    ) -> Tuple[bool, Optional[str]]:
        """
        Post an arbitrary JSON payload to a Maker ``/json`` webhook.

        Args:
            event: Maker event name.
            payload: JSON body forwarded unchanged.
            maker_key: Key overriding the configured webhook key.

        Returns:
            Tuple of (success, error_message)
        """
        key = maker_key or self.webhook_key
        if not key:
            return False, "No Maker key configured"

        url = f"{MAKER_BASE_URL}/{quote(event, safe='')}/json/with/key/{key}"

        try:
            async with httpx.AsyncClient(
                timeout=self.forward_timeout, transport=self.transport
            ) as client:
                response = await client.post(url, json=payload or {})

            if response.is_success:
                return True, None
            return False, f"IFTTT returned status {response.status_code}"

        except httpx.TimeoutException:
            return False, "Timeout connecting to IFTTT"
        except httpx.RequestError as e:
            return False, f"Connection error: {str(e)}"

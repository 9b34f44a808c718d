"""
Log of "effect requested" events polled by the IFTTT trigger.
"""

import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from haunted.models import Effect, EffectEvent

MAX_EVENTS = 50
MAX_PAGE_SIZE = 50
SAMPLE_SPACING = 60  # seconds between padded sample events


def _iso(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class EffectEventLog:
    """
    Bounded, newest-last record of requested effects.

    Timestamps are whole seconds and strictly increasing, so IFTTT can use
    ``meta.timestamp`` for ordering even when effects fire within the same
    second.
    """

    def __init__(self, max_events: int = MAX_EVENTS, started_at: Optional[float] = None):
        self._events: Deque[EffectEvent] = deque(maxlen=max_events)
        # Anchor for sample events, so they keep the same ids between polls
        self.started_at = int(started_at if started_at is not None else time.time())

    def __len__(self) -> int:
        return len(self._events)

    def record(self, effect: Effect, now: Optional[float] = None) -> EffectEvent:
        timestamp = int(now if now is not None else time.time())
        if self._events and timestamp <= self._events[-1].timestamp:
            timestamp = self._events[-1].timestamp + 1

        event = EffectEvent(
            id=uuid.uuid4().hex,
            effect=effect,
            timestamp=timestamp,
            created_at=_iso(timestamp),
        )
        self._events.append(event)
        return event

    def recent(self, limit: int) -> List[EffectEvent]:
        """
        Return ``limit`` events (at most MAX_PAGE_SIZE), newest first.

        When fewer real events exist the list is topped up with sample
        events older than anything recorded, so IFTTT endpoint checks always
        see a full page.
        """
        if limit <= 0:
            return []
        limit = min(limit, MAX_PAGE_SIZE)

        events = list(reversed(self._events))[:limit]

        oldest = self.started_at
        if events:
            oldest = min(oldest, events[-1].timestamp)

        effects = list(Effect)
        n = 0
        while len(events) < limit:
            n += 1
            timestamp = oldest - n * SAMPLE_SPACING
            events.append(
                EffectEvent(
                    id=f"sample-{timestamp}",
                    effect=effects[(n - 1) % len(effects)],
                    timestamp=timestamp,
                    created_at=_iso(timestamp),
                )
            )
        return events

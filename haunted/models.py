"""
Haunted House - Pydantic models for effects, sensors, tokens and HTTP bodies
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Enums
class Effect(str, Enum):
    BLACKOUT = "blackout"
    FLASH_RED = "flash_red"
    PLUG_ON = "plug_on"
    RESET = "reset"


class DetectionState(str, Enum):
    DETECTED = "DETECTED"
    NOT_DETECTED = "NOT_DETECTED"


def normalize_effect(value: Any) -> Optional[Effect]:
    """
    Map an incoming effect name onto the canonical Effect.

    Older front-ends and applets send hyphenated names (``flash-red``,
    ``plug-on``); both spellings resolve to the same effect.
    Returns None for anything that is not a known effect.
    """
    if not isinstance(value, str):
        return None
    key = value.strip().lower().replace("-", "_")
    try:
        return Effect(key)
    except ValueError:
        return None


# Sensor Models
class SensorConfig(BaseModel):
    effect: Effect
    endpoint_id: str
    friendly_name: str
    description: str


# Token Models
class TokenRecord(BaseModel):
    """Event Gateway credentials for one linked Alexa user."""

    grantee_token: str
    access_token: str
    refresh_token: Optional[str] = None


class TokenInfo(BaseModel):
    total_sessions: int
    total_refresh_tokens: int
    has_event_gateway_token: bool
    redis_enabled: bool


# Light Models
class DiscoveredLight(BaseModel):
    type: str = Field(description="Device family, e.g. kasa or tapo")
    host: str
    name: str
    model: Optional[str] = None
    kind: Optional[str] = Field(default=None, description="bulb, plug, strip...")


class LightDiscoveryResponse(BaseModel):
    session_id: str
    lights: List[DiscoveredLight]


# Trigger Models
class ChannelResult(BaseModel):
    """Outcome of one delivery path for a triggered effect."""

    success: bool
    message: str
    users_triggered: Optional[int] = None
    total_users: Optional[int] = None
    reconnect_required: Optional[bool] = None
    devices: Optional[Dict[str, bool]] = None


class TriggerDirectRequest(BaseModel):
    effect: Optional[str] = None
    session_id: Optional[str] = None


class TriggerResponse(BaseModel):
    success: bool
    effect: Effect
    sensor: ChannelResult
    ifttt: ChannelResult
    lights: ChannelResult
    timestamp: str
    event_id: Optional[str] = None


class WebhookTriggerRequest(BaseModel):
    """Body of the IFTTT webhook fallback endpoint."""

    event: Optional[str] = None
    effect: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    maker_key: Optional[str] = None


class SensorStatesResponse(BaseModel):
    states: Dict[str, DetectionState]


# IFTTT Models
class EffectEvent(BaseModel):
    """An "effect requested" event as exposed to the IFTTT polling trigger."""

    id: str
    effect: Effect
    timestamp: int
    created_at: str

    def to_ifttt(self) -> dict:
        return {
            "effect": self.effect.value,
            "created_at": self.created_at,
            "meta": {"id": self.id, "timestamp": self.timestamp},
        }


class IftttTriggerRequest(BaseModel):
    trigger_identity: Optional[str] = None
    triggerFields: Dict[str, Any] = Field(default_factory=dict)
    limit: Optional[int] = None
    user: Optional[Dict[str, Any]] = None


class IftttActionRequest(BaseModel):
    actionFields: Dict[str, Any] = Field(default_factory=dict)
    user: Optional[Dict[str, Any]] = None


# OAuth Models
class OAuthTokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: Optional[str] = None

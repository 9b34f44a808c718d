"""
Application settings loaded from the environment.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_EVENT_GATEWAY_URL = "https://api.eu.amazonalexa.com/v3/events"


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    return float(value)


class Settings(BaseModel):
    """Runtime configuration for the haunted house service."""

    # Alexa skill credentials (AcceptGrant exchange + token refresh)
    alexa_client_id: Optional[str] = None
    alexa_client_secret: Optional[str] = None
    alexa_event_gateway_url: str = DEFAULT_EVENT_GATEWAY_URL

    # Login with Amazon client used to validate directive bearer tokens
    lwa_client_id: Optional[str] = None
    lwa_client_secret: Optional[str] = None

    # IFTTT
    ifttt_service_key: Optional[str] = None
    ifttt_client_id: Optional[str] = None
    ifttt_client_secret: Optional[str] = None
    ifttt_webhook_key: Optional[str] = None

    redis_url: Optional[str] = None
    session_secret: str = "haunted"

    # Local Kasa/Tapo lights
    tapo_username: Optional[str] = None
    tapo_password: Optional[str] = None

    # Timing (seconds)
    sensor_reset_seconds: float = 2.0
    ifttt_timeout: float = 3.0
    alexa_timeout: float = 10.0
    light_discovery_seconds: float = 2.5

    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (and a .env file)."""
        load_dotenv()

        return cls(
            alexa_client_id=os.getenv("ALEXA_CLIENT_ID"),
            alexa_client_secret=os.getenv("ALEXA_CLIENT_SECRET"),
            alexa_event_gateway_url=os.getenv(
                "ALEXA_EVENT_GATEWAY_URL", DEFAULT_EVENT_GATEWAY_URL
            ),
            lwa_client_id=os.getenv("LWA_CLIENT_ID"),
            lwa_client_secret=os.getenv("LWA_CLIENT_SECRET"),
            ifttt_service_key=os.getenv("IFTTT_SERVICE_KEY"),
            ifttt_client_id=os.getenv("IFTTT_CLIENT_ID"),
            ifttt_client_secret=os.getenv("IFTTT_CLIENT_SECRET"),
            ifttt_webhook_key=os.getenv("IFTTT_WEBHOOK_KEY"),
            redis_url=os.getenv("REDIS_URL"),
            session_secret=os.getenv("SESSION_SECRET", "haunted"),
            tapo_username=os.getenv("TAPO_USERNAME"),
            tapo_password=os.getenv("TAPO_PASSWORD"),
            sensor_reset_seconds=_get_float("SENSOR_RESET_SECONDS", 2.0),
            ifttt_timeout=_get_float("IFTTT_TIMEOUT", 3.0),
            alexa_timeout=_get_float("ALEXA_TIMEOUT", 10.0),
            light_discovery_seconds=_get_float("LIGHT_DISCOVERY_SECONDS", 2.5),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

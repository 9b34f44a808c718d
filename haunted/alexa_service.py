"""
Alexa Service - Server-to-server communication with Amazon.

This module handles:
- Sending ChangeReports to the Alexa Event Gateway
- Exchanging AcceptGrant codes for Event Gateway tokens
- Refreshing Event Gateway tokens
- Validating directive bearer tokens against Login with Amazon
- Building the Smart Home response payloads
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from haunted.config import Settings
from haunted.models import DetectionState, SensorConfig

logger = logging.getLogger(__name__)

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
LWA_TOKENINFO_URL = "https://api.amazon.com/auth/o2/tokeninfo"

MANUFACTURER_NAME = "Haunted House"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _message_id() -> str:
    return f"msg-{uuid.uuid4()}"


class AlexaService:
    """Service for communicating with the Alexa Event Gateway and LWA."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        event_gateway_url: str,
        lwa_client_id: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Alexa service.

        Args:
            client_id: Alexa skill client id (Event Gateway permissions).
            client_secret: Alexa skill client secret.
            event_gateway_url: Regional Event Gateway endpoint.
            lwa_client_id: Expected audience of directive bearer tokens.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.event_gateway_url = event_gateway_url
        self.lwa_client_id = lwa_client_id
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "AlexaService":
        return cls(
            client_id=settings.alexa_client_id,
            client_secret=settings.alexa_client_secret,
            event_gateway_url=settings.alexa_event_gateway_url,
            lwa_client_id=settings.lwa_client_id,
            timeout=settings.alexa_timeout,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def send_change_report(
        self,
        endpoint_id: str,
        state: DetectionState,
        access_token: str,
    ) -> Tuple[bool, Optional[int], Optional[str]]:
        """
        Push a detectionState ChangeReport for one user.

        Args:
            endpoint_id: The virtual sensor endpoint.
            state: New detection state.
            access_token: The user's Event Gateway access token.

        Returns:
            Tuple of (success, http_status, error_message). The status is
            None when no response was received.
        """
        payload = build_change_report(endpoint_id, state, access_token)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    self.event_gateway_url,
                    json=payload,
                    headers=headers,
                )

                if response.status_code in (200, 202):
                    logger.info(f"Change report sent for {endpoint_id}: {state.value}")
                    return True, response.status_code, None
                else:
                    return (
                        False,
                        response.status_code,
                        f"Event Gateway returned status {response.status_code}: {response.text}",
                    )

        except httpx.TimeoutException:
            logger.error(f"Timeout sending change report for {endpoint_id}")
            return False, None, "Timeout connecting to Alexa Event Gateway"
        except httpx.RequestError as e:
            logger.error(f"Error sending change report for {endpoint_id}: {e}")
            return False, None, f"Connection error: {str(e)}"

    async def _token_request(
        self,
        form: Dict[str, str],
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[str]]:
        """POST a grant to the LWA token endpoint."""
        if not self.client_id or not self.client_secret:
            return False, None, "Alexa client credentials not configured"

        data = dict(form)
        data["client_id"] = self.client_id
        data["client_secret"] = self.client_secret

        try:
            async with self._client() as client:
                response = await client.post(
                    LWA_TOKEN_URL,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )

                if response.status_code == 200:
                    tokens = response.json()
                    if "access_token" not in tokens:
                        return False, None, "Token response missing access_token"
                    return True, tokens, None
                else:
                    return (
                        False,
                        None,
                        f"LWA returned status {response.status_code}: {response.text}",
                    )

        except httpx.TimeoutException:
            return False, None, "Timeout connecting to Login with Amazon"
        except httpx.RequestError as e:
            return False, None, f"Connection error: {str(e)}"
        except ValueError as e:
            return False, None, f"Invalid token response: {str(e)}"

    async def exchange_grant_code(
        self,
        code: str,
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[str]]:
        """
        Exchange an AcceptGrant authorization code for Event Gateway tokens.

        Returns:
            Tuple of (success, token_response, error_message)
        """
        logger.info("Exchanging grant code for event gateway access")
        return await self._token_request(
            {"grant_type": "authorization_code", "code": code}
        )

    async def refresh_tokens(
        self,
        refresh_token: str,
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[str]]:
        """
        Exchange a refresh token for a new Event Gateway access token.

        Returns:
            Tuple of (success, token_response, error_message)
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def validate_access_token(self, token: str) -> bool:
        """
        Check a directive bearer token against the LWA tokeninfo endpoint.

        When an LWA client id is configured the token audience must match it.
        """
        if not token:
            return False

        try:
            async with self._client() as client:
                response = await client.get(
                    LWA_TOKENINFO_URL,
                    params={"access_token": token},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Token validation request failed: {e}")
            return False

        if response.status_code != 200:
            return False

        if self.lwa_client_id:
            try:
                info = response.json()
            except ValueError:
                return False
            if info.get("aud") != self.lwa_client_id:
                logger.warning("Bearer token issued for a different client")
                return False

        return True


# Payload builders


def build_change_report(
    endpoint_id: str,
    state: DetectionState,
    access_token: str,
) -> dict:
    """Build an Alexa.ChangeReport event for a contact sensor."""
    return {
        "event": {
            "header": {
                "namespace": "Alexa",
                "name": "ChangeReport",
                "messageId": _message_id(),
                "payloadVersion": "3",
            },
            "endpoint": {
                "scope": {"type": "BearerToken", "token": access_token},
                "endpointId": endpoint_id,
            },
            "payload": {
                "change": {
                    "cause": {"type": "PHYSICAL_INTERACTION"},
                    "properties": [
                        {
                            "namespace": "Alexa.ContactSensor",
                            "name": "detectionState",
                            "value": state.value,
                            "timeOfSample": _now_iso(),
                            "uncertaintyInMilliseconds": 0,
                        }
                    ],
                }
            },
        }
    }


def build_discovery_endpoint(config: SensorConfig) -> dict:
    """Describe one virtual sensor for Discover.Response."""
    return {
        "endpointId": config.endpoint_id,
        "manufacturerName": MANUFACTURER_NAME,
        "friendlyName": config.friendly_name,
        "description": config.description,
        "displayCategories": ["CONTACT_SENSOR"],
        "capabilities": [
            {
                "type": "AlexaInterface",
                "interface": "Alexa.ContactSensor",
                "version": "3",
                "properties": {
                    "supported": [{"name": "detectionState"}],
                    "proactivelyReported": True,
                    "retrievable": True,
                },
            },
            {
                "type": "AlexaInterface",
                "interface": "Alexa.PowerController",
                "version": "3",
                "properties": {
                    "supported": [{"name": "powerState"}],
                    "proactivelyReported": False,
                    "retrievable": False,
                },
            },
            {
                "type": "AlexaInterface",
                "interface": "Alexa.EndpointHealth",
                "version": "3",
                "properties": {
                    "supported": [{"name": "connectivity"}],
                    "proactivelyReported": True,
                    "retrievable": True,
                },
            },
            {
                "type": "AlexaInterface",
                "interface": "Alexa",
                "version": "3",
            },
        ],
    }


def build_discovery_response(directive: dict, configs: List[SensorConfig]) -> dict:
    header = directive.get("header", {})
    return {
        "event": {
            "header": {
                "namespace": "Alexa.Discovery",
                "name": "Discover.Response",
                "messageId": header.get("messageId") or _message_id(),
                "payloadVersion": "3",
            },
            "payload": {
                "endpoints": [build_discovery_endpoint(c) for c in configs],
            },
        }
    }


def _health_property() -> dict:
    return {
        "namespace": "Alexa.EndpointHealth",
        "name": "connectivity",
        "value": {"value": "OK"},
        "timeOfSample": _now_iso(),
        "uncertaintyInMilliseconds": 0,
    }


def build_state_report(directive: dict, state: DetectionState) -> dict:
    header = directive.get("header", {})
    return {
        "event": {
            "header": {
                "namespace": "Alexa",
                "name": "StateReport",
                "messageId": header.get("messageId") or _message_id(),
                "payloadVersion": "3",
                "correlationToken": header.get("correlationToken"),
            },
            "endpoint": directive.get("endpoint", {}),
            "payload": {},
        },
        "context": {
            "properties": [
                {
                    "namespace": "Alexa.ContactSensor",
                    "name": "detectionState",
                    "value": state.value,
                    "timeOfSample": _now_iso(),
                    "uncertaintyInMilliseconds": 0,
                },
                _health_property(),
            ]
        },
    }


def build_power_response(directive: dict, power_state: str) -> dict:
    header = directive.get("header", {})
    return {
        "event": {
            "header": {
                "namespace": "Alexa",
                "name": "Response",
                "messageId": _message_id(),
                "payloadVersion": "3",
                "correlationToken": header.get("correlationToken"),
            },
            "endpoint": directive.get("endpoint", {}),
            "payload": {},
        },
        "context": {
            "properties": [
                {
                    "namespace": "Alexa.PowerController",
                    "name": "powerState",
                    "value": power_state,
                    "timeOfSample": _now_iso(),
                    "uncertaintyInMilliseconds": 0,
                },
                _health_property(),
            ]
        },
    }


def build_accept_grant_response(directive: dict) -> dict:
    header = directive.get("header", {})
    return {
        "event": {
            "header": {
                "namespace": "Alexa.Authorization",
                "name": "AcceptGrant.Response",
                "messageId": header.get("messageId") or _message_id(),
                "payloadVersion": "3",
            },
            "payload": {},
        }
    }


def build_error_response(
    directive: Optional[dict],
    error_type: str,
    message: str,
    namespace: str = "Alexa",
) -> dict:
    """
    Build an ErrorResponse event.

    AcceptGrant failures use the ``Alexa.Authorization`` namespace; all
    other directives report errors in the ``Alexa`` namespace.
    """
    directive = directive or {}
    header = directive.get("header", {})
    event: Dict[str, Any] = {
        "header": {
            "namespace": namespace,
            "name": "ErrorResponse",
            "messageId": header.get("messageId") or "error",
            "payloadVersion": "3",
        },
        "payload": {"type": error_type, "message": message},
    }
    if header.get("correlationToken"):
        event["header"]["correlationToken"] = header["correlationToken"]
    if directive.get("endpoint"):
        event["endpoint"] = directive["endpoint"]
    return {"event": event}

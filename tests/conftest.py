"""Pytest configuration and fixtures for the haunted house service."""

from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from haunted.alexa_service import AlexaService
from haunted.config import Settings
from haunted.main import create_app
from haunted.token_manager import TokenManager

GATEWAY_HOST = "api.eu.amazonalexa.com"
GATEWAY_PATH = "/v3/events"
LWA_HOST = "api.amazon.com"
LWA_TOKEN_PATH = "/auth/o2/token"
LWA_TOKENINFO_PATH = "/auth/o2/tokeninfo"
MAKER_HOST = "maker.ifttt.com"

SERVICE_KEY = "test-service-key"
WEBHOOK_KEY = "test-webhook-key"


class FakeUpstream:
    """
    Stand-in for Amazon and IFTTT behind an httpx.MockTransport.

    Each route holds a queue of (status, json) answers; the last answer
    repeats once the queue is down to one. Unrouted requests get a 404.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], List[Tuple[int, Any]]] = {}

    def add(self, host: str, path: str, *answers: Tuple[int, Any]) -> None:
        self.routes[(host, path)] = list(answers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answers = self.routes.get((request.url.host, request.url.path))
        if not answers:
            return httpx.Response(404, json={"error": "not found"})
        status_code, body = answers[0] if len(answers) == 1 else answers.pop(0)
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status_code, json=body)

    def calls(self, host: str, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host == host and (path is None or r.url.path == path)
        ]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        alexa_client_id="alexa-client",
        alexa_client_secret="alexa-secret",
        ifttt_service_key=SERVICE_KEY,
        session_secret="test-secret",
        sensor_reset_seconds=0.2,
    )


@pytest.fixture
def client(settings: Settings, upstream: FakeUpstream):
    """TestClient with the lifespan running and all outbound HTTP faked."""
    app = create_app(settings, transport=upstream.transport)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def context(client: TestClient):
    return client.app.state.context


@pytest.fixture
def alexa(settings: Settings, upstream: FakeUpstream) -> AlexaService:
    return AlexaService.from_settings(settings, transport=upstream.transport)


@pytest.fixture
def token_manager(alexa: AlexaService) -> TokenManager:
    return TokenManager(alexa=alexa)

"""Tests for the HTTP surface: voice turns, sessions, health probes."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from voice_agent.config import settings
from voice_agent.core.agent.dispatch import SideEffects, TurnResult, get_orchestrator
from voice_agent.core.intelligence.session.models import Session
from voice_agent.infra.redis import get_rate_limiter_store
from voice_agent.main import app


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.handle_utterance = AsyncMock(return_value=TurnResult(
        response_text="Thanks, Jane!",
        session_id="call-1",
        side_effects=SideEffects(user_info={"name": "Jane", "email": None, "collected": False}),
        intent="unknown",
        confidence=0.3,
        step="none",
        processing_time_ms=1.5,
    ))
    mock.get_session = MagicMock(return_value=None)
    mock.close_session = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def limiter():
    store = MagicMock()
    store.max_requests = 60
    store.is_allowed = AsyncMock(return_value=(True, 59, 60))
    return store


@pytest.fixture
def client(orchestrator, limiter):
    # Lifespan is not run: no Redis connection or sweep task in tests
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_rate_limiter_store] = lambda: limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestTurnEndpoint:
    """Test POST /voice/turn."""

    def test_turn(self, client, orchestrator):
        response = client.post(
            "/voice/turn",
            json={"session_id": "call-1", "text": "I'm Jane"},
            headers={"X-Tenant-ID": "acme"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["response_text"] == "Thanks, Jane!"
        assert data["side_effects"]["user_info"]["name"] == "Jane"
        assert data["step"] == "none"
        orchestrator.handle_utterance.assert_awaited_once_with("call-1", "I'm Jane", "acme")

    def test_rate_limit_headers(self, client):
        response = client.post("/voice/turn", json={"session_id": "call-1", "text": "hello"})

        assert response.headers["X-RateLimit-Limit"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "59"

    def test_default_tenant(self, client, orchestrator, limiter):
        client.post("/voice/turn", json={"session_id": "call-1", "text": "hello"})

        limiter.is_allowed.assert_awaited_once_with(f"tenant:{settings.default_tenant_id}")
        assert orchestrator.handle_utterance.call_args.args[2] == settings.default_tenant_id

    def test_rate_limited(self, client, orchestrator, limiter):
        limiter.is_allowed.return_value = (False, 0, 30)

        response = client.post("/voice/turn", json={"session_id": "call-1", "text": "hello"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        orchestrator.handle_utterance.assert_not_awaited()

    def test_empty_text_rejected(self, client):
        response = client.post("/voice/turn", json={"session_id": "call-1", "text": ""})

        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"


class TestSessionEndpoints:
    """Test session inspection and close."""

    def test_get_session(self, client, orchestrator):
        orchestrator.get_session.return_value = Session(session_id="call-1", tenant_id="acme")

        response = client.get("/voice/sessions/call-1")

        assert response.status_code == 200
        assert response.json()["session_id"] == "call-1"
        assert response.json()["appointment_flow"]["step"] == "none"

    def test_get_missing_session(self, client):
        assert client.get("/voice/sessions/missing").status_code == 404

    def test_close_session(self, client, orchestrator):
        response = client.delete("/voice/sessions/call-1")

        assert response.status_code == 204
        orchestrator.close_session.assert_awaited_once_with("call-1")

    def test_close_missing_session(self, client, orchestrator):
        orchestrator.close_session.return_value = False

        assert client.delete("/voice/sessions/missing").status_code == 404


class TestHealthEndpoints:
    """Test health probes."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_live(self, client):
        assert client.get("/health/live").json()["status"] == "alive"

    def test_ready_with_redis_down(self, client):
        """Test Redis outage only degrades readiness."""
        calendar = MagicMock()
        calendar.health_check = AsyncMock(return_value=True)

        with patch("voice_agent.api.routes.health.check_redis_health", AsyncMock(return_value=False)), \
                patch("voice_agent.api.routes.health.get_calendar_client", return_value=calendar):
            response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {"redis": "degraded", "calendar": "ok"}

    def test_not_ready_without_calendar(self, client):
        calendar = MagicMock()
        calendar.health_check = AsyncMock(return_value=False)

        with patch("voice_agent.api.routes.health.check_redis_health", AsyncMock(return_value=True)), \
                patch("voice_agent.api.routes.health.get_calendar_client", return_value=calendar):
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

"""
API Endpoint Tests

Tests for the FastAPI gateway using TestClient. The identity store runs
against the in-memory Redis stand-in and presentation stages resolve
instantly, so full verification flows complete within a request.
"""

from contextlib import contextmanager
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from main import app
from tests.conftest import DESKTOP_UA, IPHONE_UA, InMemoryRedis


ENVIRONMENT = {
    "user_agent": DESKTOP_UA,
    "screen_width": 1920,
    "screen_height": 1080,
    "timezone": "Asia/Kolkata",
    "language": "en-US",
}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def redis_backend() -> InMemoryRedis:
    return InMemoryRedis()


@contextmanager
def client_for(monkeypatch, redis_backend):
    """TestClient for FastAPI app with lifespan context."""
    monkeypatch.setenv("MIRROR_OBSERVE_DWELL", "0")
    monkeypatch.setenv("MIRROR_TIME_SCALE", "0")
    monkeypatch.setenv("MIRROR_PROFILE", "api-test")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)

    with patch("main.get_redis_client", return_value=redis_backend):
        with TestClient(app) as client:
            yield client


@pytest.fixture
def client(monkeypatch, redis_backend):
    with client_for(monkeypatch, redis_backend) as client:
        yield client


def open_session(client, environment=None) -> dict:
    response = client.post("/sessions?wait=true", json={"environment": environment or ENVIRONMENT})
    assert response.status_code == 201
    return response.json()


def type_text(client, session_id: str, text: str) -> None:
    for char in text:
        response = client.post(f"/sessions/{session_id}/keys", json={"key": char})
        assert response.status_code == 200


# =============================================================================
# Health Check Tests
# =============================================================================

class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_200(self, client):
        """Health endpoint should return 200."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data


# =============================================================================
# Session Lifecycle Tests
# =============================================================================

class TestSessionLifecycle:
    """Open, type, submit."""

    def test_open_session_reaches_input(self, client):
        data = open_session(client)
        assert data["phase"] == "INPUT"
        assert data["card"] is None
        assert data["keystrokes"] == 0

    def test_keystrokes_are_counted(self, client):
        session_id = open_session(client)["session_id"]
        type_text(client, session_id, "21CS")

        data = client.get(f"/sessions/{session_id}").json()
        assert data["keystrokes"] == 4

    def test_submit_authorizes_and_persists(self, client, redis_backend):
        session_id = open_session(client)["session_id"]
        type_text(client, session_id, "21CS045")

        response = client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"})
        assert response.status_code == 200

        data = response.json()
        assert data["phase"] == "AUTHORIZED"
        assert data["identifier"] == "21CS045"
        assert 55.0 <= data["coherence_score"] <= 99.0
        assert len(data["fingerprint"]) == 64
        assert data["card"]["coherence"].endswith("%")
        assert data["card"]["hash_preview"] == data["fingerprint"][:24] + "…"

        assert "ai_mirror_identity:api-test" in redis_backend.data

    def test_enter_key_submits_field_value(self, client):
        session_id = open_session(client)["session_id"]
        type_text(client, session_id, "21CS045")

        response = client.post(
            f"/sessions/{session_id}/keys?wait=true",
            json={"key": "Enter", "value": "  21CS045  "},
        )
        data = response.json()
        assert data["phase"] == "AUTHORIZED"
        assert data["identifier"] == "21CS045"
        assert data["keystrokes"] == 7

    def test_empty_submit_stays_in_input(self, client):
        session_id = open_session(client)["session_id"]
        response = client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "   "})

        assert response.status_code == 200
        assert response.json()["phase"] == "INPUT"

    def test_returning_visitor_resumes(self, client):
        session_id = open_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"})

        data = open_session(client)
        assert data["phase"] == "AUTHORIZED"
        assert data["identifier"] == "21CS045"
        assert data["coherence_score"] is None
        assert data["card"]["coherence"] == "SESSION RESUMED"
        assert data["card"]["resumed"] is True

    def test_other_device_does_not_resume(self, client):
        session_id = open_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"})

        data = open_session(client, {**ENVIRONMENT, "screen_width": 1280, "screen_height": 720})
        assert data["phase"] == "INPUT"

    def test_conflicting_identity_diverges(self, client):
        first = open_session(client)["session_id"]
        second = open_session(client)["session_id"]

        client.post(f"/sessions/{first}/submit?wait=true", json={"identifier": "21CS045"})
        response = client.post(f"/sessions/{second}/submit?wait=true", json={"identifier": "21CS999"})

        data = response.json()
        assert data["phase"] == "DIVERGENCE"
        assert data["card"] is None
        assert data["coherence_score"] is None


# =============================================================================
# Error Handling Tests
# =============================================================================

class TestErrors:

    def test_unknown_session_returns_404(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/submit", json={"identifier": "x"}).status_code == 404
        assert client.put("/sessions/nope/environment", json=ENVIRONMENT).status_code == 404

    def test_second_submit_returns_409(self, client):
        session_id = open_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"})

        response = client.post(f"/sessions/{session_id}/submit", json={"identifier": "21CS045"})
        assert response.status_code == 409

    def test_invalid_payloads_return_422(self, client):
        assert client.post("/sessions", json={}).status_code == 422

        session_id = open_session(client)["session_id"]
        assert client.post(f"/sessions/{session_id}/keys", json={"key": ""}).status_code == 422
        assert client.post(
            f"/sessions/{session_id}/pointer",
            json={"x": 1, "y": 1, "viewport_width": 0, "viewport_height": 10},
        ).status_code == 422


# =============================================================================
# Interaction Endpoint Tests
# =============================================================================

class TestInteraction:

    def test_pointer_and_orientation_return_204(self, client):
        session_id = open_session(client)["session_id"]

        response = client.post(
            f"/sessions/{session_id}/pointer",
            json={"x": 10, "y": 20, "viewport_width": 100, "viewport_height": 100},
        )
        assert response.status_code == 204

        response = client.post(f"/sessions/{session_id}/orientation", json={"beta": 5, "gamma": 5})
        assert response.status_code == 204

    def test_orientation_permission_desktop(self, client):
        session_id = open_session(client)["session_id"]
        response = client.post(f"/sessions/{session_id}/orientation/permission", json={"granted": True})
        assert response.json() == {"orientation_enabled": False}

    def test_orientation_permission_iphone(self, client):
        session_id = open_session(client, {**ENVIRONMENT, "user_agent": IPHONE_UA})["session_id"]

        denied = client.post(f"/sessions/{session_id}/orientation/permission", json={"granted": False})
        assert denied.json() == {"orientation_enabled": False}

        granted = client.post(f"/sessions/{session_id}/orientation/permission", json={"granted": True})
        assert granted.json() == {"orientation_enabled": True}

    def test_environment_update_changes_fingerprint_inputs(self, client):
        first = open_session(client)["session_id"]
        second = open_session(client)["session_id"]

        response = client.put(
            f"/sessions/{second}/environment",
            json={**ENVIRONMENT, "timezone": "Europe/Berlin"},
        )
        assert response.status_code == 204

        a = client.post(f"/sessions/{first}/submit?wait=true", json={"identifier": "21CS045"}).json()
        b = client.post(f"/sessions/{second}/submit?wait=true", json={"identifier": "21CS045"}).json()

        assert a["phase"] == b["phase"] == "AUTHORIZED"
        assert a["fingerprint"] != b["fingerprint"]


# =============================================================================
# Render Loop Tests
# =============================================================================

class TestRenderLoop:
    """Pointer/tilt state reaches the renderer through views and frames."""

    def test_pointer_sample_moves_influence(self, client):
        session_id = open_session(client)["session_id"]
        client.post(
            f"/sessions/{session_id}/pointer",
            json={"x": 750, "y": 125, "viewport_width": 1000, "viewport_height": 500},
        )

        interaction = client.get(f"/sessions/{session_id}").json()["interaction"]
        assert interaction["influence_x"] == 0.5
        assert interaction["influence_y"] == 0.5
        assert interaction["orientation_enabled"] is False
        assert interaction["card_tilt"] is None

    def test_tilt_drives_influence_once_permitted(self, client):
        session_id = open_session(client, {**ENVIRONMENT, "user_agent": IPHONE_UA})["session_id"]
        client.post(f"/sessions/{session_id}/orientation/permission", json={"granted": True})
        client.post(f"/sessions/{session_id}/orientation", json={"beta": 45, "gamma": -45})

        interaction = client.get(f"/sessions/{session_id}").json()["interaction"]
        assert interaction["orientation_enabled"] is True
        assert (interaction["influence_x"], interaction["influence_y"]) == (-1.0, 1.0)

    def test_frame_returns_renderer_state(self, client):
        session_id = open_session(client)["session_id"]
        client.post(
            f"/sessions/{session_id}/pointer",
            json={"x": 0, "y": 0, "viewport_width": 1000, "viewport_height": 500},
        )

        response = client.post(f"/sessions/{session_id}/frame", json={"elapsed": 1.5, "delta": 0.016})
        assert response.status_code == 200

        data = response.json()
        assert data["phase"] == "INPUT"
        assert 0.0 <= data["pulse"] <= 1.0
        assert (data["interaction"]["influence_x"], data["interaction"]["influence_y"]) == (-1.0, 1.0)

    def test_card_tilt_after_authorization(self, client):
        session_id = open_session(client)["session_id"]
        client.post(
            f"/sessions/{session_id}/pointer",
            json={"x": 750, "y": 125, "viewport_width": 1000, "viewport_height": 500},
        )
        client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"})

        data = client.post(f"/sessions/{session_id}/frame", json={"elapsed": 9.0, "delta": 0.016}).json()
        assert data["phase"] == "AUTHORIZED"
        assert data["interaction"]["card_tilt"] == pytest.approx({"rotate_y": 4.0, "rotate_x": 4.0})

    def test_frame_validation(self, client):
        session_id = open_session(client)["session_id"]
        response = client.post(f"/sessions/{session_id}/frame", json={"elapsed": -1, "delta": 0})
        assert response.status_code == 422
        assert client.post("/sessions/nope/frame", json={"elapsed": 0, "delta": 0}).status_code == 404


# =============================================================================
# Session Retention Tests
# =============================================================================

class TestSessionRetention:
    """Finished and excess sessions are released."""

    def test_finished_sessions_are_evicted(self, monkeypatch, redis_backend):
        monkeypatch.setenv("MIRROR_SESSION_TTL", "0")

        with client_for(monkeypatch, redis_backend) as client:
            finished = []
            for i in range(20):
                # A new device each time, so no session resumes the last identity
                device = {**ENVIRONMENT, "screen_width": 1000 + i}
                session_id = open_session(client, device)["session_id"]
                data = client.post(
                    f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"}
                ).json()
                assert data["phase"] == "AUTHORIZED"
                finished.append(session_id)

            open_session(client)
            assert len(main.state.sessions) == 1
            assert len(main.state.environments) == 1
            assert len(main.state.last_seen) == 1
            assert client.get(f"/sessions/{finished[0]}").status_code == 404

    def test_open_sessions_capped(self, monkeypatch, redis_backend):
        monkeypatch.setenv("MIRROR_MAX_SESSIONS", "3")

        with client_for(monkeypatch, redis_backend) as client:
            ids = [open_session(client)["session_id"] for _ in range(5)]

            assert len(main.state.sessions) == 3
            assert len(main.state.environments) == 3
            assert client.get(f"/sessions/{ids[0]}").status_code == 404
            assert client.get(f"/sessions/{ids[-1]}").status_code == 200

    def test_recently_used_session_survives_cap(self, monkeypatch, redis_backend):
        monkeypatch.setenv("MIRROR_MAX_SESSIONS", "2")

        with client_for(monkeypatch, redis_backend) as client:
            first = open_session(client)["session_id"]
            second = open_session(client)["session_id"]
            client.get(f"/sessions/{first}")
            open_session(client)

            assert client.get(f"/sessions/{first}").status_code == 200
            assert client.get(f"/sessions/{second}").status_code == 404

    def test_default_ttl_keeps_finished_session_readable(self, client):
        session_id = open_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/submit?wait=true", json={"identifier": "21CS045"})
        open_session(client)

        assert client.get(f"/sessions/{session_id}").json()["phase"] == "AUTHORIZED"

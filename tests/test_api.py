"""
Tests for the HTTP API and token authentication
"""
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from playback_monitor import api
from playback_monitor.api import app

pytestmark = pytest.mark.integration

SOURCE_URL = "http://example.com/live/master.m3u8"

LIVE_MANIFEST = {
    "kind": "manifest-parsed",
    "levels": [
        {"bitrate": 1000000, "width": 1280, "height": 720, "details": {"live": True, "start_sn": 5}},
        {"bitrate": 3000000, "width": 1920, "height": 1080},
    ],
}

PLAYING_STATE = {"paused": False, "ready_state": 4, "current_time": 10.0, "live_sync_position": 14.0}


@pytest.fixture
def client():
    with patch.object(api.settings, "API_TOKEN", None):
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture
def client_with_auth():
    """Create a test client with authentication enabled"""
    with patch.object(api.settings, "API_TOKEN", "test_token_123"):
        with TestClient(app) as test_client:
            yield test_client


def create_session(client, path="adaptive"):
    response = client.post("/sessions", json={"url": SOURCE_URL, "path": path})
    assert response.status_code == 200
    return response.json()


class TestAuthentication:
    """Test API token authentication"""

    def test_protected_endpoint_without_token_when_auth_enabled(self, client_with_auth):
        response = client_with_auth.get("/health")
        assert response.status_code == 401
        assert "API token required" in response.json()["detail"]

    def test_protected_endpoint_with_invalid_token(self, client_with_auth):
        response = client_with_auth.get("/health", headers={"X-API-Token": "wrong_token"})
        assert response.status_code == 403
        assert "Invalid API token" in response.json()["detail"]

    def test_protected_endpoint_with_valid_token(self, client_with_auth):
        response = client_with_auth.get("/health", headers={"X-API-Token": "test_token_123"})
        assert response.status_code == 200

    def test_token_as_query_parameter(self, client_with_auth):
        response = client_with_auth.get("/sessions?api_token=test_token_123")
        assert response.status_code == 200

    def test_no_auth_required_when_token_not_configured(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestSessions:

    def test_create_session_returns_load_command(self, client):
        body = create_session(client)

        assert body["path"] == "adaptive"
        assert body["live_status"] == "unknown"
        assert body["commands"] == [{"command": "load", "url": SOURCE_URL}]

    def test_invalid_url_rejected(self, client):
        response = client.post("/sessions", json={"url": "ftp://example.com/stream.m3u8"})
        assert response.status_code == 422

    def test_list_and_delete(self, client):
        session_id = create_session(client)["session_id"]

        listed = client.get("/sessions").json()
        assert session_id in [s["session_id"] for s in listed["sessions"]]

        response = client.delete(f"/sessions/{session_id}")
        assert response.status_code == 200
        assert response.json()["final_metrics"]["session_id"] == session_id

        assert client.get(f"/sessions/{session_id}/metrics").status_code == 404
        assert client.delete(f"/sessions/{session_id}").status_code == 404

    def test_unknown_session(self, client):
        assert client.get("/sessions/missing/live-status").status_code == 404
        assert client.post("/sessions/missing/signals", json={"signals": []}).status_code == 404

    def test_health_counts_sessions(self, client):
        create_session(client)
        create_session(client, path="native")

        body = client.get("/health").json()
        assert body["total_sessions"] == 2
        assert body["active_sessions"] == 2


class TestSignals:

    def test_live_playback_flow(self, client):
        session_id = create_session(client)["session_id"]

        response = client.post(f"/sessions/{session_id}/signals", json={
            "state": PLAYING_STATE,
            "signals": [LIVE_MANIFEST, {"kind": "play"}, {"kind": "playing"}],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["live_status"] == "live"
        assert [r["kind"] for r in body["results"]] == ["manifest-parsed", "play", "playing"]
        assert all(r["handled"] for r in body["results"])

        metrics = client.get(f"/sessions/{session_id}/metrics").json()["metrics"]
        assert metrics["startup_time_ms"] is not None
        assert len(metrics["available_levels"]) == 2
        assert metrics["current_quality"]["bitrate"] == 1000000

        status = client.get(f"/sessions/{session_id}/live-status").json()
        assert status["live_status"] == "live"

    def test_fragment_error_returns_resume_command(self, client):
        session_id = create_session(client)["session_id"]

        body = client.post(f"/sessions/{session_id}/signals", json={
            "signals": [{"kind": "error", "type": "networkError", "details": "fragLoadError", "fatal": False}],
        }).json()

        assert body["active"] is True
        assert body["commands"] == [{"command": "start_load", "start_position": -1}]
        assert body["results"][0]["results"][0]["action"] == "resume_load"

    def test_fatal_error_ends_session(self, client):
        session_id = create_session(client)["session_id"]

        body = client.post(f"/sessions/{session_id}/signals", json={
            "signals": [
                {"kind": "error", "type": "mediaError", "details": "bufferStalledError", "fatal": True},
                {"kind": "waiting"},
            ],
        }).json()

        assert body["active"] is False
        assert body["commands"] == [{"command": "destroy"}]
        assert body["terminal_error"]["category"] == "media"
        assert body["results"][1]["handled"] is False

        metrics = client.get(f"/sessions/{session_id}/metrics").json()
        assert metrics["active"] is False
        assert metrics["metrics"]["errors"]["fatal"] == 1

        assert client.post(f"/sessions/{session_id}/reset-metrics").status_code == 409

        events = client.get(f"/sessions/{session_id}/events").json()["events"]
        assert [e["event_type"] for e in events][-1] == "terminal_error"

    def test_fragment_sizes_reported_as_data_consumption(self, client):
        session_id = create_session(client)["session_id"]

        client.post(f"/sessions/{session_id}/signals", json={"signals": [{
            "kind": "fragment-loaded",
            "fragment": {"sn": 1, "duration": 4.0},
            "stats": {"loading_start": 0.0, "loading_end": 500.0, "loaded_bytes": 1000000},
        }]})

        data = client.get(f"/sessions/{session_id}/metrics").json()["metrics"]["data"]
        assert data["total_bytes"] == 1000000
        assert data["last_bandwidth_bps"] == pytest.approx(16000000)

    def test_null_paused_in_state_keeps_last_known_value(self, client):
        session_id = create_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/signals", json={"state": PLAYING_STATE, "signals": []})

        client.post(f"/sessions/{session_id}/signals", json={
            "state": {"paused": None, "ready_state": None},
            "signals": [{"kind": "waiting"}],
        })

        metrics = client.get(f"/sessions/{session_id}/metrics").json()["metrics"]
        assert metrics["stalling"] is True

    def test_unknown_signal_kind_rejected(self, client):
        session_id = create_session(client)["session_id"]

        response = client.post(f"/sessions/{session_id}/signals", json={"signals": [{"kind": "seeked"}]})

        assert response.status_code == 422

    def test_stall_reported_through_state(self, client):
        session_id = create_session(client)["session_id"]

        client.post(f"/sessions/{session_id}/signals", json={
            "state": PLAYING_STATE,
            "signals": [{"kind": "buffer-empty"}, {"kind": "buffer-empty"}],
        })
        client.post(f"/sessions/{session_id}/signals", json={"signals": [{"kind": "buffer-appended"}]})

        metrics = client.get(f"/sessions/{session_id}/metrics").json()["metrics"]
        assert metrics["stall_count"] == 1
        assert metrics["stalling"] is False


class TestControl:

    def test_reset_live_status(self, client):
        session_id = create_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/signals", json={"signals": [LIVE_MANIFEST]})

        response = client.post(f"/sessions/{session_id}/reset-live-status")

        assert response.status_code == 200
        assert response.json()["live_status"] == "unknown"
        events = client.get(f"/sessions/{session_id}/events").json()["events"]
        assert events[-1]["data"]["reason"] == "reset"

    def test_reset_metrics(self, client):
        session_id = create_session(client)["session_id"]
        client.post(f"/sessions/{session_id}/signals", json={
            "state": PLAYING_STATE,
            "signals": [{"kind": "play"}, {"kind": "playing"}],
        })

        assert client.post(f"/sessions/{session_id}/reset-metrics").status_code == 200

        metrics = client.get(f"/sessions/{session_id}/metrics").json()["metrics"]
        assert metrics["startup_time_ms"] is None


class TestPlaylist:

    MASTER = (
        "#EXTM3U\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360\n"
        "360p.m3u8\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=2400000,RESOLUTION=1280x720\n"
        "720p.m3u8\n"
    )

    VOD = (
        "#EXTM3U\n"
        "#EXT-X-TARGETDURATION:10\n"
        "#EXTINF:10.0,\n"
        "seg0.ts\n"
        "#EXT-X-ENDLIST\n"
    )

    def test_master_playlist_dispatched_as_manifest(self, client):
        session_id = create_session(client)["session_id"]

        body = client.post(f"/sessions/{session_id}/playlist", json={"content": self.MASTER}).json()

        assert body["signal"]["kind"] == "manifest-parsed"
        assert body["handled"] is True
        metrics = client.get(f"/sessions/{session_id}/metrics").json()["metrics"]
        assert [level["bitrate"] for level in metrics["available_levels"]] == [800000, 2400000]

    def test_media_playlist_dispatched_as_level_loaded(self, client):
        session_id = create_session(client)["session_id"]

        body = client.post(f"/sessions/{session_id}/playlist", json={"content": self.VOD, "level": 0}).json()

        assert body["signal"]["kind"] == "level-loaded"
        assert body["live_status"] == "vod"

    def test_master_playlist_as_level_is_rejected(self, client):
        session_id = create_session(client)["session_id"]

        response = client.post(f"/sessions/{session_id}/playlist", json={"content": self.MASTER, "level": 1})

        assert response.status_code == 400

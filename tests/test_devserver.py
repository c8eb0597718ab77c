"""
Tests for the Development Bridge Server

Uses FastAPI's TestClient for the HTTP routes and the websocket stream.
"""

import base64
import json
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from seavoice.devserver import POLICY_VIOLATION, SILENCE_FRAMES, TokenStore, create_app
from seavoice.realtime.simulation import SIMULATED_USER_PHRASES, tone_pcm

QUIET = base64.b64encode(b"\x00\x00" * 480).decode("ascii")
LOUD = base64.b64encode(tone_pcm(20, amplitude=0.3)).decode("ascii")


@pytest.fixture
def client():
    return TestClient(create_app(step_delay_s=0))


def issue_token(client, **body) -> dict:
    response = client.post("/session", json=body)
    assert response.status_code == 200
    return response.json()


def receive(ws) -> dict:
    return json.loads(ws.receive_text())


def collect_reply(ws) -> list:
    """Read messages until the server returns to listening."""
    messages = []
    while True:
        message = receive(ws)
        messages.append(message)
        if message == {"type": "status", "status": "listening"}:
            return messages


class TestHttpRoutes:
    """Tests for health and session issue."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_issue_session(self, client):
        body = issue_token(client, user_location="Key West, FL", coordinates=[[24.55, -81.78]])

        assert body["token"]
        assert body["conversation_id"].startswith("conv_")
        assert body["expires_in"] == 600
        assert body["websocket_url"] == f"/ws?token={body['token']}"

    def test_conversation_id_is_kept(self, client):
        body = issue_token(client, conversation_id="conv_prev")
        assert body["conversation_id"] == "conv_prev"

    def test_empty_coordinates_rejected(self, client):
        response = client.post("/session", json={"coordinates": []})
        assert response.status_code == 422

    def test_blank_auth_token_rejected(self, client):
        response = client.post("/session", json={"auth_token": "  "})
        assert response.status_code == 401


class TestTokenStore:
    """Tests for single-use tokens."""

    def test_single_use(self):
        store = TokenStore()
        token = store.issue().token

        assert store.redeem(token) is not None
        assert store.redeem(token) is None
        assert len(store) == 0

    def test_expired_tokens_purged_on_issue(self):
        store = TokenStore(ttl_s=0)
        store.issue()
        time.sleep(0.01)
        store.issue()
        assert len(store) == 1

        time.sleep(0.01)
        assert store.purge_expired() == 1
        assert len(store) == 0

    def test_unknown(self):
        assert TokenStore().redeem("nope") is None

    def test_expired(self):
        store = TokenStore(ttl_s=0)
        token = store.issue().token
        time.sleep(0.01)

        assert store.redeem(token) is None
        assert len(store) == 0


class TestStream:
    """Tests for the websocket conversation."""

    def test_bad_token_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?token=bogus") as ws:
                ws.receive_text()

        assert exc_info.value.code == POLICY_VIOLATION

    def test_token_cannot_be_reused(self, client):
        token = issue_token(client)["token"]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            assert receive(ws)["type"] == "ready"
            ws.send_text(json.dumps({"type": "close"}))

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws?token={token}") as ws:
                ws.receive_text()

    def test_commit_produces_reply(self, client):
        body = issue_token(client)
        with client.websocket_connect(f"/ws?token={body['token']}") as ws:
            ready = receive(ws)
            assert ready == {"type": "ready", "conversation_id": body["conversation_id"]}

            ws.send_text(json.dumps({"type": "commit"}))
            assert receive(ws) == {"type": "status", "status": "processing"}
            user = receive(ws)
            assert user == {"type": "transcript", "role": "user", "text": SIMULATED_USER_PHRASES[0]}

            reply = collect_reply(ws)
            types = [m["type"] for m in reply]
            assert reply[0] == {"type": "status", "status": "speaking"}
            assert "transcript_delta" in types
            assert "audio" in types
            assert types[-3:] == ["audio_done", "transcript", "status"]
            assert reply[-2]["role"] == "assistant"
            assert reply[-2]["text"]

            ws.send_text(json.dumps({"type": "close"}))

    def test_quiet_frames_end_turn(self, client):
        token = issue_token(client)["token"]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            receive(ws)

            ws.send_text(json.dumps({"type": "audio", "data": LOUD}))
            assert receive(ws) == {"type": "status", "status": "user_speaking"}

            for _ in range(SILENCE_FRAMES):
                ws.send_text(json.dumps({"type": "audio", "data": QUIET}))
            assert receive(ws) == {"type": "status", "status": "processing"}
            assert receive(ws)["role"] == "user"
            collect_reply(ws)

            ws.send_text(json.dumps({"type": "close"}))

    def test_malformed_message(self, client):
        token = issue_token(client)["token"]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            receive(ws)
            ws.send_text("{not json")
            error = receive(ws)

            assert error["type"] == "error"
            assert error["code"] == "invalid_json"

            ws.send_text(json.dumps({"type": "close"}))

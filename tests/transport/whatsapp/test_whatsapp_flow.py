"""
WhatsApp Webhook Integration Tests

End-to-end through FastAPI: HTTP request → router → orchestrator → stub gateway.
"""

import json

import pytest
from fastapi.testclient import TestClient

from infra.bootstrap import EngineBootstrap
from infra.config import EngineConfig
from main import app
from transport.whatsapp.gateway import StubMessagingGateway
from transport.whatsapp.security import SIGNATURE_HEADER, compute_signature
from transport.whatsapp.webhook import get_engine

CHANNEL_ID = "channel-1"
SWEEP_TOKEN = "sweep-secret"


@pytest.fixture
def engine(monkeypatch, store, build_flow):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("GATEWAY_BACKEND", "stub")
    monkeypatch.setenv("SWEEP_TOKEN", SWEEP_TOKEN)
    monkeypatch.delenv("WHATSAPP_APP_SECRET", raising=False)
    monkeypatch.delenv("CDN_URL", raising=False)

    build_flow([
        ("greet", "sendText", {"message": "Hi {{customer_name}}"}),
        ("bye", "end", {}),
    ])
    engine = EngineBootstrap(
        config=EngineConfig.from_env(),
        store=store,
        gateway=StubMessagingGateway(),
    )
    EngineBootstrap.set_instance(engine)
    app.dependency_overrides[get_engine] = lambda: engine
    yield engine
    app.dependency_overrides.clear()
    EngineBootstrap.reset()


@pytest.fixture
def client(engine):
    return TestClient(app)


class TestChallenge:
    """GET /webhook/{channel_id} subscription handshake."""

    def test_valid_challenge(self, client):
        response = client.get(f"/webhook/{CHANNEL_ID}", params={
            "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "abc123",
        })

        assert response.status_code == 200
        assert response.text == "abc123"

    def test_wrong_token(self, client):
        response = client.get(f"/webhook/{CHANNEL_ID}", params={
            "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "abc123",
        })
        assert response.status_code == 403

    def test_wrong_mode(self, client):
        response = client.get(f"/webhook/{CHANNEL_ID}", params={
            "hub.mode": "unsubscribe", "hub.verify_token": "verify-me", "hub.challenge": "abc123",
        })
        assert response.status_code == 403

    def test_unknown_channel(self, client):
        response = client.get("/webhook/unknown", params={
            "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "abc123",
        })
        assert response.status_code == 404


class TestTextFlow:
    """POST /webhook/{channel_id} message processing."""

    def test_text_message_flow(self, client, engine, webhook_payload):
        """Keyword message runs the greeting flow and answers by name."""
        response = client.post(f"/webhook/{CHANNEL_ID}", json=webhook_payload("HELP"))

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "result": "completed"}
        assert engine.gateway.texts() == ["Hi Ana"]

    def test_duplicate_delivery_is_acknowledged(self, client, engine, webhook_payload):
        payload = webhook_payload("HELP", message_id="wamid.dup")

        client.post(f"/webhook/{CHANNEL_ID}", json=payload)
        response = client.post(f"/webhook/{CHANNEL_ID}", json=payload)

        assert response.status_code == 200
        assert response.json()["result"] == "duplicate"
        assert engine.gateway.texts() == ["Hi Ana"]

    def test_unmatched_message_is_acknowledged(self, client, webhook_payload):
        response = client.post(f"/webhook/{CHANNEL_ID}", json=webhook_payload("random chatter"))

        assert response.status_code == 200
        assert response.json()["result"] == "no_match"

    def test_invalid_json(self, client):
        response = client.post(
            f"/webhook/{CHANNEL_ID}",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_not_whatsapp_payload(self, client):
        response = client.post(f"/webhook/{CHANNEL_ID}", json={"object": "page", "entry": []})
        assert response.status_code == 400

    def test_unknown_channel(self, client, webhook_payload):
        response = client.post("/webhook/unknown", json=webhook_payload())
        assert response.status_code == 404

    def test_orchestrator_crash_is_generic_500(self, client, engine, webhook_payload, monkeypatch):
        async def explode(channel_id, payload):
            raise RuntimeError("database on fire")

        monkeypatch.setattr(engine.orchestrator, "handle", explode)
        response = client.post(f"/webhook/{CHANNEL_ID}", json=webhook_payload())

        assert response.status_code == 500
        assert "fire" not in response.text


class TestSignedChannel:
    """Channels with an app secret require a valid signature."""

    @pytest.fixture
    def signed_client(self, engine, channel):
        channel.app_secret = "channel-secret"
        engine.store.save_config(channel)
        return TestClient(app)

    def test_missing_signature(self, signed_client, webhook_payload):
        response = signed_client.post(f"/webhook/{CHANNEL_ID}", json=webhook_payload())
        assert response.status_code == 403

    def test_valid_signature(self, signed_client, webhook_payload):
        body = json.dumps(webhook_payload("HELP")).encode()
        response = signed_client.post(
            f"/webhook/{CHANNEL_ID}",
            content=body,
            headers={
                "Content-Type": "application/json",
                SIGNATURE_HEADER: compute_signature(body, "channel-secret"),
            },
        )

        assert response.status_code == 200
        assert response.json()["result"] == "completed"


class TestSweepEndpoint:
    """POST /internal/sweep."""

    def test_requires_token(self, client):
        assert client.post("/internal/sweep").status_code == 403
        assert client.post("/internal/sweep", headers={"X-Sweep-Token": "wrong"}).status_code == 403

    def test_runs_sweep(self, client):
        response = client.post("/internal/sweep", headers={"X-Sweep-Token": SWEEP_TOKEN})

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "resumed": 0, "expired": 0, "abandoned": 0, "skipped": 0}

    def test_disabled_without_token(self, client, engine):
        engine.config.sweep_token = None
        assert client.post("/internal/sweep", headers={"X-Sweep-Token": "x"}).status_code == 404


class TestHealth:
    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_ready_reports_engine(self, client):
        body = client.get("/health/ready").json()

        assert body["status"] == "ready"
        assert body["store"] == "memory"
        assert body["gateway"] == "stub"
        assert body["sweep"] == "enabled"

    def test_ready_without_sweep_token(self, client, engine):
        engine.config.sweep_token = None

        body = client.get("/health/ready").json()

        assert body["status"] == "ready"
        assert body["sweep"] == "disabled"

    def test_not_ready_when_store_is_down(self, client, engine, monkeypatch):
        monkeypatch.setattr(engine.store, "ping", lambda: False)

        assert client.get("/health/ready").json() == {"status": "not_ready", "reason": "store unreachable"}

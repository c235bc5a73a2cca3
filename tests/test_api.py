from __future__ import annotations

import pytest
from conftest import FakeFactory, FakeSession, GatedFactory
from fastapi.testclient import TestClient

from wabridge.api import create_app
from wabridge.bridge import Bridge
from wabridge.config import BridgeConfig
from wabridge.session import LookupResult, MediaContent, TextContent
from wabridge.supervisor import ConnectionState


@pytest.fixture
def bridge(tmp_path) -> Bridge:
    return Bridge(BridgeConfig(session_dir=tmp_path), session_factory=FakeFactory())


@pytest.fixture
def client(bridge) -> TestClient:
    return TestClient(create_app(bridge, manage_lifespan=False))


def _connect(bridge: Bridge, session: FakeSession | None = None) -> FakeSession:
    session = session or FakeSession()
    bridge.supervisor._session = session
    bridge.supervisor.info.state = ConnectionState.CONNECTED
    bridge.supervisor.info.connected_identity = "15551234567"
    return session


def test_status_when_disconnected(client) -> None:
    resp = client.get("/status")
    assert resp.status_code == 200
    assert resp.json() == {"status": "disconnected", "phone": "", "has_qr": False, "error": ""}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_status_and_qr_while_pairing(client, bridge) -> None:
    assert client.get("/qr").json() == {"available": False, "qr_data_url": ""}

    bridge.supervisor.info.state = ConnectionState.PAIRING_READY
    bridge.supervisor.info.pairing_payload = "data:image/svg+xml;base64,AAA"

    assert client.get("/status").json()["has_qr"] is True
    assert client.get("/qr").json() == {
        "available": True,
        "qr_data_url": "data:image/svg+xml;base64,AAA",
    }


def test_status_when_connected(client, bridge) -> None:
    _connect(bridge)
    body = client.get("/status").json()
    assert body["status"] == "connected"
    assert body["phone"] == "15551234567"


def test_send_validation(client) -> None:
    resp = client.post("/send", json={"text": "hi"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing 'to' field"}

    resp = client.post("/send", json={"to": "4917"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing 'text' field"}

    resp = client.post(
        "/send", content=b"{nope", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON"}

    resp = client.post("/send", json=["4917"])
    assert resp.status_code == 400


def test_send_when_not_connected(client) -> None:
    resp = client.post("/send", json={"to": "4917", "text": "hi"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Not connected to WhatsApp"}


def test_send_text(client, bridge) -> None:
    session = _connect(bridge)

    resp = client.post("/send", json={"to": "4917", "message": "hi"})

    assert resp.status_code == 200
    assert resp.json() == {"messageId": "MSG1"}
    assert session.sent == [("4917@s.whatsapp.net", TextContent("hi"))]
    assert bridge.messages.get("4917@s.whatsapp.net", "MSG1") == {"conversation": "hi"}


def test_send_media_as_document(client, bridge) -> None:
    session = _connect(bridge)

    resp = client.post(
        "/send",
        json={"to": "4917@s.whatsapp.net", "media_url": "https://cdn.example/f/report%20q3.pdf"},
    )

    assert resp.status_code == 200
    assert session.sent[0][1] == MediaContent(
        kind="document",
        url="https://cdn.example/f/report%20q3.pdf",
        filename="report q3.pdf",
        mimetype="application/octet-stream",
    )


def test_send_image_with_caption(client, bridge) -> None:
    session = _connect(bridge)

    client.post(
        "/send",
        json={
            "to": "4917",
            "media_url": "https://cdn.example/cat.jpg",
            "media_type": "image",
            "caption": "look",
        },
    )

    assert session.sent[0][1] == MediaContent(
        kind="image", url="https://cdn.example/cat.jpg", caption="look"
    )


def test_send_failure_returns_500(client, bridge) -> None:
    session = _connect(bridge)
    session.send_error = RuntimeError("ack timeout")

    resp = client.post("/send", json={"to": "4917", "text": "hi"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "ack timeout"}


def test_resolve_numbers_validation(client) -> None:
    resp = client.post("/resolve-numbers", json={})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing 'phones' array"}

    resp = client.post("/resolve-numbers", json={"phones": "4917"})
    assert resp.status_code == 400

    resp = client.post("/resolve-numbers", json={"phones": ["4917"]})
    assert resp.status_code == 503
    assert resp.json() == {"error": "Not connected to WhatsApp"}


def test_resolve_numbers(client, bridge) -> None:
    _connect(
        bridge,
        FakeSession(lookups={"4917@s.whatsapp.net": [LookupResult("4917@s.whatsapp.net", True)]}),
    )

    resp = client.post("/resolve-numbers", json={"phones": ["4917", "4918"]})

    assert resp.status_code == 200
    assert resp.json() == {
        "resolved": {
            "4917": {"jid": "4917@s.whatsapp.net", "isLid": False},
            "4918": {"jid": None, "isLid": False},
        },
        "total_mappings": 0,
    }


def test_unknown_routes_and_methods(client) -> None:
    for resp in (client.get("/nope"), client.get("/send"), client.post("/status")):
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not found"}


def test_preflight(client) -> None:
    resp = client.options("/send")
    assert resp.status_code == 204
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]
    assert "X-Webhook-Secret" in resp.headers["access-control-allow-headers"]


def test_health(client) -> None:
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["uptime"] >= 0


def test_status_served_while_first_connection_pending(tmp_path) -> None:
    factory = GatedFactory()
    bridge = Bridge(BridgeConfig(session_dir=tmp_path), session_factory=factory)

    with TestClient(create_app(bridge)) as client:
        resp = client.get("/status")
        assert resp.status_code == 200
        assert resp.json()["status"] == "disconnected"
        assert client.get("/health").json()["ok"] is True

    assert factory.created == []

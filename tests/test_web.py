from __future__ import annotations

import pytest
from fakes import PHONE
from fastapi.testclient import TestClient

from wapair.adapter import DisconnectReason
from wapair.exceptions import ProtocolError, ProtocolRejected
from wapair.web import create_app


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as c:
        yield c


def test_pair_returns_code(client, adapter) -> None:
    r = client.post("/api/pair", json={"phone": PHONE})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] is True
    assert body["code"] == "ABCD-1234"
    assert body["brand"] == "TestBrand"
    assert "Linked devices" in body["message"]
    assert adapter.sessions[0].requested == [PHONE]


@pytest.mark.parametrize("raw", ["+94 71 234 5678", "94-712-345-678", 94712345678])
def test_pair_normalizes_formatted_numbers(client, adapter, raw) -> None:
    body = client.post("/api/pair", json={"phone": raw}).json()

    assert body["status"] is True
    assert adapter.sessions[0].credential_dir.name == PHONE


@pytest.mark.parametrize("payload", [{"phone": "12345"}, {"phone": "14712345678"}, {}])
def test_pair_rejects_invalid_phone_without_allocating(client, adapter, store, payload) -> None:
    r = client.post("/api/pair", json=payload)

    assert r.status_code == 200
    body = r.json()
    assert body["status"] is False
    assert body["message"].startswith("Invalid phone number")
    assert adapter.sessions == []
    assert not store.root.exists() or not any(store.root.iterdir())


def test_pair_without_body_is_invalid_phone(client) -> None:
    body = client.post("/api/pair").json()

    assert body == {"status": False, "message": "Invalid phone number. Example: +94 7X XXX XXXX"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"json": {"phone": [PHONE]}},
        {"json": {"phone": {"n": 1}}},
        {"json": {"phone": True}},
        {"json": [PHONE]},
        {"content": b"phone=94712345678", "headers": {"Content-Type": "application/json"}},
        {"content": b'{"phone": ', "headers": {"Content-Type": "application/json"}},
    ],
)
def test_pair_malformed_body_is_invalid_phone(client, adapter, kwargs) -> None:
    r = client.post("/api/pair", **kwargs)

    assert r.status_code == 200
    assert r.json() == {
        "status": False,
        "message": "Invalid phone number. Example: +94 7X XXX XXXX",
    }
    assert adapter.sessions == []


def test_second_request_reports_existing_attempt(client) -> None:
    client.post("/api/pair", json={"phone": PHONE})
    body = client.post("/api/pair", json={"phone": PHONE}).json()

    assert body["status"] is False
    assert "already exists" in body["message"]


def test_blocked_request_asks_to_try_again(client, adapter, manager) -> None:
    adapter.session_kwargs["error"] = ProtocolRejected(DisconnectReason.CONNECTION_CLOSED)

    body = client.post("/api/pair", json={"phone": PHONE}).json()

    assert body["status"] is False
    assert "428" in body["message"]
    assert "try again" in body["message"].lower()
    assert PHONE not in manager


def test_other_rejection_codes_are_reported(client, adapter) -> None:
    adapter.session_kwargs["error"] = ProtocolRejected(DisconnectReason.RATE_OVERLIMIT)

    body = client.post("/api/pair", json={"phone": PHONE}).json()

    assert body["status"] is False
    assert "429" in body["message"]


def test_protocol_error_message(client, adapter, manager) -> None:
    adapter.session_kwargs["error"] = ProtocolError("no ack")

    body = client.post("/api/pair", json={"phone": PHONE}).json()

    assert body == {
        "status": False,
        "message": "Failed to ask WhatsApp for a pairing code. Please try again.",
    }
    assert PHONE not in manager


def test_unexpected_error_is_a_server_error(client, adapter) -> None:
    adapter.session_kwargs["error"] = RuntimeError("unexpected")

    r = client.post("/api/pair", json={"phone": PHONE})

    assert r.status_code == 200
    assert r.json() == {"status": False, "message": "Server error. Please try again."}


def test_session_poll_is_read_once(client, manager) -> None:
    assert client.get("/api/session", params={"phone": PHONE}).json() == {"ready": False}

    manager.deliveries.put(PHONE, "QkxPQg==")
    first = client.get("/api/session", params={"phone": "+94 71 234 5678"}).json()
    second = client.get("/api/session", params={"phone": PHONE}).json()

    assert first == {"ready": True, "brand": "TestBrand", "session": "QkxPQg=="}
    assert second == {"ready": False}


def test_index_serves_pairing_page(client) -> None:
    r = client.get("/")

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    assert "/api/pair" in r.text


def test_health_reports_active_attempts(client) -> None:
    assert client.get("/health").json() == {"status": "ok", "active": 0}
    client.post("/api/pair", json={"phone": PHONE})
    assert client.get("/health").json() == {"status": "ok", "active": 1}


def test_shutdown_abandons_attempts(manager, store) -> None:
    with TestClient(create_app(manager)) as c:
        c.post("/api/pair", json={"phone": PHONE})
        assert store.exists(PHONE)

    assert len(manager.registry) == 0
    assert not store.exists(PHONE)

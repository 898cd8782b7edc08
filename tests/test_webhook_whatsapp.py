"""Tests for the gateway webhook receiver (POST /webhooks/whatsapp/uazapi)."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import ORG_ID, OTHER_ORG_ID, LogRecorder

import batepapo.domain.inbound as inbound
from batepapo.api.factory import create_app

URL = "/webhooks/whatsapp/uazapi"


@pytest.fixture
def client():
    return TestClient(create_app(role="public"))


@pytest.fixture
def chat(monkeypatch, store):
    """Contacts and messages written by inbound events."""
    state = {"contacts": {}, "messages": []}

    def find_or_create_contact(cur, *, organization_id, phone, name=None):
        key = (organization_id, phone)
        if key in state["contacts"]:
            return state["contacts"][key], False
        state["contacts"][key] = f"c-{len(state['contacts']) + 1}"
        return state["contacts"][key], True

    def insert_message(cur, **kwargs):
        store._write("message")
        state["messages"].append(kwargs)
        return f"m-{len(state['messages'])}"

    monkeypatch.setattr(inbound, "find_or_create_contact", find_or_create_contact)
    monkeypatch.setattr(inbound, "insert_message", insert_message)
    return state


def _message_event(text="Oi", jid="5511999999999@s.whatsapp.net", from_me=False, msg_id="WAMSG1"):
    return {
        "event": "messages",
        "data": {
            "key": {"id": msg_id, "remoteJid": jid, "fromMe": from_me},
            "pushName": "Maria",
            "message": {"conversation": text},
        },
    }


class TestInstanceResolution:
    def test_unknown_token_is_404(self, client, store):
        store.add(ORG_ID, token="tok-known")

        response = client.post(URL, json={"event": "connection", "status": "connected"}, headers={"X-Instance-Token": "nope"})

        assert response.status_code == 404
        assert response.json() == {"error": "Instance not found"}

    def test_missing_token_is_404_even_with_instances(self, client, store):
        store.add(ORG_ID, token="tok-known")

        response = client.post(URL, json={"event": "connection", "status": "connected"})

        assert response.status_code == 404

    def test_token_from_query(self, client, store):
        store.add(ORG_ID, status="connecting", token="tok-q")

        response = client.post(f"{URL}?token=tok-q", json={"event": "connection", "status": "connected"})

        assert response.status_code == 200
        assert store.get(ORG_ID).status == "connected"

    def test_header_wins_over_query(self, client, store):
        store.add(ORG_ID, status="connecting", token="tok-header")
        store.add(OTHER_ORG_ID, status="connecting", token="tok-query")

        response = client.post(
            f"{URL}?token=tok-query",
            json={"event": "connection", "status": "connected"},
            headers={"X-Instance-Token": "tok-header"},
        )

        assert response.status_code == 200
        assert store.get(ORG_ID).status == "connected"
        assert store.get(OTHER_ORG_ID).status == "connecting"


class TestConnectionEvents:
    def test_connected_sets_phone(self, client, store):
        store.add(ORG_ID, status="connecting", token="tok-a")

        response = client.post(
            URL,
            json={"event": "connection", "status": "connected", "phone": "5511999999999"},
            headers={"X-Instance-Token": "tok-a"},
        )

        assert response.status_code == 200
        assert response.json()["handled"] == "connection"
        assert response.json()["changed"] is True
        record = store.get(ORG_ID)
        assert record.phone_number == "5511999999999"
        assert record.last_connected_at is not None

    def test_repeated_event_writes_once(self, client, store):
        store.add(ORG_ID, status="connecting", token="tok-a")
        event = {"event": "connection", "status": "connected", "phone": "5511999999999"}

        client.post(URL, json=event, headers={"X-Instance-Token": "tok-a"})
        second = client.post(URL, json=event, headers={"X-Instance-Token": "tok-a"})

        assert second.json()["changed"] is False
        assert store.writes == ["update"]

    def test_disconnect_clears_phone(self, client, store):
        store.add(ORG_ID, status="connected", phone_number="5511999999999", token="tok-a")

        client.post(URL, json={"event": "connection", "status": "disconnected"}, headers={"X-Instance-Token": "tok-a"})

        record = store.get(ORG_ID)
        assert record.status == "disconnected"
        assert record.phone_number is None

    def test_phone_not_stored_while_connecting(self, client, store):
        store.add(ORG_ID, status="disconnected", token="tok-a")

        client.post(
            URL,
            json={"event": "connection", "status": "connecting", "phone": "5511999999999"},
            headers={"X-Instance-Token": "tok-a"},
        )

        record = store.get(ORG_ID)
        assert record.status == "connecting"
        assert record.phone_number is None

    def test_store_failure_is_500(self, client, store):
        store.add(ORG_ID, status="connecting", token="tok-a")
        store.fail_writes = True

        response = client.post(URL, json={"event": "connection", "status": "connected"}, headers={"X-Instance-Token": "tok-a"})

        assert response.status_code == 500


class TestMessageEvents:
    def test_inbound_message_creates_contact(self, client, store, chat):
        store.add(ORG_ID, status="connected", token="tok-a")

        response = client.post(URL, json=_message_event(), headers={"X-Instance-Token": "tok-a"})

        assert response.status_code == 200
        data = response.json()
        assert data["handled"] == "message"
        assert chat["contacts"] == {(ORG_ID, "+5511999999999"): "c-1"}
        message = chat["messages"][0]
        assert message["sender_type"] == "contact"
        assert message["status"] == "received"
        assert message["body"] == "Oi"
        assert message["whatsapp_id"] == "WAMSG1"

    def test_second_message_reuses_contact(self, client, store, chat):
        store.add(ORG_ID, status="connected", token="tok-a")

        client.post(URL, json=_message_event(msg_id="A"), headers={"X-Instance-Token": "tok-a"})
        client.post(URL, json=_message_event(msg_id="B"), headers={"X-Instance-Token": "tok-a"})

        assert len(chat["contacts"]) == 1
        assert [m["contact_id"] for m in chat["messages"]] == ["c-1", "c-1"]

    def test_from_me_is_stored_as_sent(self, client, store, chat):
        store.add(ORG_ID, status="connected", token="tok-a")

        client.post(URL, json=_message_event(from_me=True), headers={"X-Instance-Token": "tok-a"})

        message = chat["messages"][0]
        assert message["sender_type"] == "user"
        assert message["status"] == "sent"

    def test_group_message_ignored(self, client, store, chat):
        store.add(ORG_ID, status="connected", token="tok-a")

        response = client.post(
            URL,
            json=_message_event(jid="120363000000@g.us"),
            headers={"X-Instance-Token": "tok-a"},
        )

        assert response.status_code == 200
        assert response.json()["handled"] == "ignored"
        assert chat["messages"] == []

    def test_logs_no_message_text_or_phone(self, client, store, chat):
        store.add(ORG_ID, status="connected", token="tok-a")
        recorder = LogRecorder()

        with patch("batepapo.domain.inbound.logger", recorder):
            client.post(URL, json=_message_event(text="Segredo"), headers={"X-Instance-Token": "tok-a"})

        logged = recorder.get_all_logged_content()
        assert "Segredo" not in logged
        assert "5511999999999" not in logged
        assert "Maria" not in logged


class TestBadRequests:
    def test_invalid_json_is_400(self, client, store):
        response = client.post(
            URL,
            content=b"{not json",
            headers={"Content-Type": "application/json", "X-Instance-Token": "tok-a"},
        )

        assert response.status_code == 400

    def test_non_object_body_is_400(self, client, store):
        response = client.post(URL, json=["a", "b"], headers={"X-Instance-Token": "tok-a"})

        assert response.status_code == 400

    def test_invalid_data_shape_is_400(self, client, store):
        store.add(ORG_ID, status="connected", token="tok-a")

        response = client.post(
            URL,
            json={"event": "messages", "data": "oops"},
            headers={"X-Instance-Token": "tok-a"},
        )

        assert response.status_code == 400

    def test_unrelated_event_is_acknowledged(self, client, store):
        store.add(ORG_ID, status="connected", token="tok-a")

        response = client.post(URL, json={"event": "presence"}, headers={"X-Instance-Token": "tok-a"})

        assert response.status_code == 200
        assert response.json()["handled"] == "ignored"
        assert store.writes == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": {"key": "oops"}},
            {"event": "messages", "data": {"key": "oops"}},
            {
                "event": "messages",
                "data": {"key": {"remoteJid": "5511@s.whatsapp.net"}, "message": {"extendedTextMessage": "x"}},
            },
            {
                "event": "messages",
                "data": {"key": {"remoteJid": "5511@s.whatsapp.net"}, "message": {"imageMessage": "x"}},
            },
            {
                "event": "messages",
                "data": {"key": {"remoteJid": "5511@s.whatsapp.net"}, "message": {"documentMessage": 3}},
            },
        ],
    )
    def test_malformed_message_is_400(self, client, store, chat, payload):
        store.add(ORG_ID, status="connected", token="tok-a")

        response = client.post(URL, json=payload, headers={"X-Instance-Token": "tok-a"})

        assert response.status_code == 400
        assert chat["messages"] == []

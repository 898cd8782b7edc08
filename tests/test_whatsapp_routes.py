"""Tests for /whatsapp endpoints: auth, org RBAC and error mapping."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import ORG_ID

from batepapo.api.factory import create_app
from batepapo.api.routes.whatsapp import get_gateway
from batepapo.domain.instances import PersistenceError
from batepapo.domain.messaging import NotConnectedError
from batepapo.gateway.client import GatewayError
from batepapo.gateway.models import GatewayStatus


@pytest.fixture
def client(gateway):
    app = create_app(role="public")
    app.dependency_overrides[get_gateway] = lambda: gateway
    return TestClient(app)


def _url(path: str, organization_id: str = ORG_ID) -> str:
    return f"/whatsapp{path}?organization_id={organization_id}"


class TestAuth:
    def test_missing_token_is_401(self, client, oidc_env):
        response = client.get(_url("/instance"))
        assert response.status_code == 401

    def test_not_a_member_is_403(self, client, auth_headers, org_role):
        org_role(None)

        response = client.get(_url("/instance"), headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["detail"] == "No access to organization"

    def test_organization_id_required(self, client, auth_headers, org_role):
        org_role("owner")

        response = client.get("/whatsapp/instance", headers=auth_headers)

        assert response.status_code == 422


class TestInstanceEndpoints:
    def test_get_instance_not_configured(self, client, auth_headers, org_role, store):
        org_role("attendant")

        response = client.get(_url("/instance"), headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"configured": False, "status": "not_configured"}

    def test_create_instance(self, client, auth_headers, org_role, store, gateway, monkeypatch):
        org_role("owner")
        monkeypatch.setenv("APP_URL", "https://crm.batepapo.com.br")

        response = client.post(_url("/instance"), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "connecting"
        assert data["qrcode"] == "data:image/png;base64,QRDATA"
        assert "tok-new" not in response.text
        gateway.configure_webhook.assert_called_once_with(
            "tok-new", "https://crm.batepapo.com.br/webhooks/whatsapp/uazapi"
        )

    def test_create_twice_is_409(self, client, auth_headers, org_role, store):
        org_role("owner")
        store.add(ORG_ID)

        response = client.post(_url("/instance"), headers=auth_headers)

        assert response.status_code == 409

    def test_attendant_cannot_create(self, client, auth_headers, org_role, store, gateway):
        org_role("attendant")

        response = client.post(_url("/instance"), headers=auth_headers)

        assert response.status_code == 403
        gateway.create_instance.assert_not_called()

    def test_gateway_failure_on_create_is_502(self, client, auth_headers, org_role, store, gateway):
        org_role("manager")
        gateway.create_instance.side_effect = GatewayError("POST /instance/init returned 500", status_code=500)

        response = client.post(_url("/instance"), headers=auth_headers)

        assert response.status_code == 502

    def test_persistence_failure_on_create_is_500(self, client, auth_headers, org_role, store):
        org_role("owner")
        store.fail_writes = True

        response = client.post(_url("/instance"), headers=auth_headers)

        assert response.status_code == 500

    def test_delete(self, client, auth_headers, org_role, store):
        org_role("owner")
        store.add(ORG_ID, status="connected", phone_number="5511999999999")

        response = client.delete(_url("/instance"), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert store.get(ORG_ID) is None

    def test_delete_not_configured_is_404(self, client, auth_headers, org_role, store):
        org_role("owner")

        response = client.delete(_url("/instance"), headers=auth_headers)

        assert response.status_code == 404


class TestStatusEndpoints:
    def test_status_reconciles(self, client, auth_headers, org_role, store, gateway):
        org_role("attendant")
        store.add(ORG_ID, status="connecting")
        gateway.get_status.return_value = GatewayStatus(status="connected", phone="5511999999999")

        response = client.get(_url("/status"), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "connected"
        assert store.get(ORG_ID).status == "connected"

    def test_status_degraded_is_200(self, client, auth_headers, org_role, store, gateway):
        org_role("attendant")
        store.add(ORG_ID, status="connected", phone_number="5511999999999")
        gateway.get_status.side_effect = GatewayError("GET /instance/all failed: Timeout")

        response = client.get(_url("/status"), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["degraded"] is True
        assert data["status"] == "connected"

    def test_connect(self, client, auth_headers, org_role, store):
        org_role("attendant")
        store.add(ORG_ID, status="disconnected")

        response = client.post(_url("/connect"), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["pairingCode"] == "ABCD-1234"

    def test_disconnect_requires_manager(self, client, auth_headers, org_role, store):
        org_role("attendant")
        store.add(ORG_ID, status="connected")

        response = client.post(_url("/disconnect"), headers=auth_headers)

        assert response.status_code == 403

    def test_disconnect_tolerates_gateway_failure(self, client, auth_headers, org_role, store, gateway):
        org_role("manager")
        store.add(ORG_ID, status="connected", phone_number="5511999999999")
        gateway.disconnect.side_effect = GatewayError("POST /instance/disconnect returned 404", status_code=404)

        response = client.post(_url("/disconnect"), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["remote_acknowledged"] is False
        assert store.get(ORG_ID).status == "disconnected"


class TestMessagingEndpoints:
    def test_send_maps_not_connected_to_400(self, client, auth_headers, org_role):
        org_role("attendant")

        with patch(
            "batepapo.domain.messaging.send_message",
            side_effect=NotConnectedError("WhatsApp is not connected"),
        ):
            response = client.post(
                _url("/send"),
                headers=auth_headers,
                json={"contact_id": "c-1", "message": "Olá"},
            )

        assert response.status_code == 400

    def test_send_passes_caller(self, client, auth_headers, org_role, user_id, gateway):
        org_role("attendant")

        with patch(
            "batepapo.domain.messaging.send_message",
            return_value={"success": True, "message_id": "m-1", "whatsapp_id": "WA1"},
        ) as mock_send:
            response = client.post(
                _url("/send"),
                headers=auth_headers,
                json={"contact_id": "c-1", "message": "Olá"},
            )

        assert response.status_code == 200
        kwargs = mock_send.call_args.kwargs
        assert kwargs["user_id"] == user_id
        assert kwargs["organization_id"] == ORG_ID
        assert kwargs["message_type"] == "text"

    def test_send_rejects_unknown_type(self, client, auth_headers, org_role):
        org_role("attendant")

        response = client.post(
            _url("/send"),
            headers=auth_headers,
            json={"contact_id": "c-1", "message": "Olá", "type": "sticker"},
        )

        assert response.status_code == 422

    def test_contacts_gateway_failure_is_502(self, client, auth_headers, org_role):
        org_role("attendant")

        with patch(
            "batepapo.domain.messaging.list_phone_contacts",
            side_effect=GatewayError("GET /contacts returned 500", status_code=500),
        ):
            response = client.get(_url("/contacts"), headers=auth_headers)

        assert response.status_code == 502

    def test_send_persistence_failure_is_500(self, client, auth_headers, org_role):
        org_role("attendant")

        with patch(
            "batepapo.domain.messaging.send_message",
            side_effect=PersistenceError("Failed to save message"),
        ):
            response = client.post(
                _url("/send"),
                headers=auth_headers,
                json={"contact_id": "c-1", "message": "Olá"},
            )

        assert response.status_code == 500


class TestGatewayDependency:
    def test_missing_gateway_config_is_500(self, auth_headers, org_role, store, monkeypatch):
        org_role("owner")
        monkeypatch.delenv("UAZAPI_ADMIN_TOKEN", raising=False)
        client = TestClient(create_app(role="public"))

        response = client.post(_url("/instance"), headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "WhatsApp gateway not configured"

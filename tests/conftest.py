"""Shared pytest fixtures for batepapo tests."""
import sys
sys.dont_write_bytecode = True

from unittest.mock import MagicMock, patch  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402

from helpers import (  # noqa: E402
    OIDC_AUDIENCE,
    OIDC_ISSUER,
    FakeInstanceStore,
    _create_jwks,
    _create_token,
    _generate_rsa_keypair,
    fake_txn,
)

from batepapo.gateway.client import GatewayClient  # noqa: E402
from batepapo.gateway.models import ConnectResult, CreatedInstance, GatewayStatus  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """The JWKS cache is module-level; reset it around every test."""
    import batepapo.api.auth as auth_module

    auth_module._jwks_cache.clear()
    yield
    auth_module._jwks_cache.clear()


# --- auth ---------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_keypair():
    return _generate_rsa_keypair()


@pytest.fixture
def jwks(rsa_keypair):
    _, public_key = rsa_keypair
    return _create_jwks(public_key)


@pytest.fixture
def oidc_env(monkeypatch):
    monkeypatch.setenv("OIDC_ISSUER", OIDC_ISSUER)
    monkeypatch.setenv("OIDC_AUDIENCE", OIDC_AUDIENCE)
    monkeypatch.setenv("OIDC_JWKS_URL", f"{OIDC_ISSUER}/.well-known/jwks.json")
    monkeypatch.delenv("OIDC_AUTHORIZED_PARTIES", raising=False)


@pytest.fixture
def mock_jwks_fetch(jwks):
    with patch("batepapo.api.auth._fetch_jwks", return_value=jwks) as mock:
        yield mock


@pytest.fixture
def user_id():
    return str(uuid4())


@pytest.fixture
def mock_db_user(user_id):
    """Resolve subject "user-123" to a CRM user; any other subject is unknown."""
    from batepapo.api.auth import CurrentUser

    def mock_get_user(external_subject: str):
        if external_subject == "user-123":
            return CurrentUser(
                id=user_id,
                external_subject="user-123",
                email="ana@example.com",
                name="Ana",
            )
        return None

    with patch("batepapo.api.auth._get_user_from_db", side_effect=mock_get_user) as mock:
        yield mock


@pytest.fixture
def auth_headers(rsa_keypair, oidc_env, mock_jwks_fetch, mock_db_user):
    private_key, _ = rsa_keypair
    return {"Authorization": f"Bearer {_create_token(private_key)}"}


@pytest.fixture
def org_role():
    """Patch the caller's organization role. Call with a role or None."""
    patchers = []

    def _set(role):
        p = patch("batepapo.api.rbac._get_user_role_for_org", return_value=role)
        p.start()
        patchers.append(p)

    yield _set
    for p in patchers:
        p.stop()


# --- instance store and gateway ---------------------------------------------


@pytest.fixture
def store(monkeypatch):
    """In-memory instance store wired into the domain modules."""
    fake = FakeInstanceStore()

    import batepapo.domain.inbound as inbound
    import batepapo.domain.instances as instances

    monkeypatch.setattr(instances, "txn", fake_txn)
    monkeypatch.setattr(instances, "get_instance_by_org", fake.get_instance_by_org)
    monkeypatch.setattr(instances, "insert_instance", fake.insert_instance)
    monkeypatch.setattr(instances, "update_instance_state", fake.update_instance_state)
    monkeypatch.setattr(instances, "mark_connecting", fake.mark_connecting)
    monkeypatch.setattr(instances, "mark_disconnected", fake.mark_disconnected)
    monkeypatch.setattr(instances, "delete_instance_row", fake.delete_instance)
    monkeypatch.setattr(inbound, "txn", fake_txn)
    monkeypatch.setattr(inbound, "get_instance_by_token", fake.get_instance_by_token)
    return fake


@pytest.fixture
def gateway():
    """Gateway client double with the happy-path answers."""
    client = MagicMock(spec=GatewayClient)
    client.create_instance.return_value = CreatedInstance(name="org_3f2b8c1e", token="tok-new")
    client.connect.return_value = ConnectResult(
        status="connecting",
        qrcode="data:image/png;base64,QRDATA",
        pairing_code="ABCD-1234",
    )
    client.get_status.return_value = GatewayStatus(status="connecting")
    return client

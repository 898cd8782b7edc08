"""Shared test helpers (not fixtures) for batepapo tests."""

from __future__ import annotations

import base64
import time
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import jwt
import psycopg2
from cryptography.hazmat.primitives.asymmetric import rsa

from batepapo.infra.repositories.instances_repository import InstanceRecord

OIDC_ISSUER = "https://auth.example.com"
OIDC_AUDIENCE = "batepapo-api"

ORG_ID = "3f2b8c1e-7d4a-4e2b-9c1f-0a1b2c3d4e5f"
OTHER_ORG_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"


def _generate_rsa_keypair():
    """Generate RSA key pair for test JWT signing."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    """Create JWKS from public key."""
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(byte_length, "big")).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = OIDC_ISSUER,
    aud: str = OIDC_AUDIENCE,
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    """Create signed JWT for testing."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp

    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


@contextmanager
def fake_txn(conn=None):
    """Stand-in for infra.db.txn: yields a mock cursor, propagates errors."""
    yield MagicMock()


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.calls]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        return " ".join(f"{args} {kwargs}" for _, args, kwargs in self.calls)


class FakeInstanceStore:
    """In-memory whatsapp_instances table with the repository function signatures."""

    def __init__(self):
        self.rows: dict[str, InstanceRecord] = {}
        self.writes: list[str] = []
        self.fail_writes = False

    def add(
        self,
        organization_id: str,
        *,
        status: str = "connecting",
        phone_number: str | None = None,
        token: str | None = None,
        last_connected_at: datetime | None = None,
    ) -> InstanceRecord:
        record = InstanceRecord(
            id=str(uuid4()),
            organization_id=organization_id,
            instance_name=f"org_{organization_id.split('-')[0]}",
            instance_token=token or f"tok-{uuid4().hex[:8]}",
            status=status,
            phone_number=phone_number,
            webhook_configured=True,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            last_connected_at=last_connected_at,
        )
        self.rows[organization_id] = record
        return record

    def get(self, organization_id: str) -> InstanceRecord | None:
        return self.rows.get(organization_id)

    def _write(self, op: str) -> None:
        self.writes.append(op)
        if self.fail_writes:
            raise psycopg2.OperationalError("connection lost")

    def _by_id(self, instance_id: str) -> InstanceRecord:
        return next(r for r in self.rows.values() if r.id == instance_id)

    # repository functions

    def get_instance_by_org(self, cur, organization_id):
        return self.rows.get(organization_id)

    def get_instance_by_token(self, cur, instance_token):
        return next((r for r in self.rows.values() if r.instance_token == instance_token), None)

    def insert_instance(self, cur, *, organization_id, instance_name, instance_token, status, webhook_configured):
        self._write("insert")
        record = InstanceRecord(
            id=str(uuid4()),
            organization_id=organization_id,
            instance_name=instance_name,
            instance_token=instance_token,
            status=status,
            phone_number=None,
            webhook_configured=webhook_configured,
            created_at=datetime.now(timezone.utc),
            last_connected_at=None,
        )
        self.rows[organization_id] = record
        return record

    def update_instance_state(self, cur, *, instance_id, status, phone_number, last_connected_at):
        self._write("update")
        record = self._by_id(instance_id)
        self.rows[record.organization_id] = replace(
            record,
            status=status,
            phone_number=phone_number,
            last_connected_at=last_connected_at,
        )

    def mark_connecting(self, cur, *, instance_id):
        self._write("connecting")
        record = self._by_id(instance_id)
        self.rows[record.organization_id] = replace(record, status="connecting")

    def mark_disconnected(self, cur, *, instance_id):
        self._write("disconnected")
        record = self._by_id(instance_id)
        self.rows[record.organization_id] = replace(record, status="disconnected", phone_number=None)

    def delete_instance(self, cur, *, instance_id):
        self._write("delete")
        record = self._by_id(instance_id)
        del self.rows[record.organization_id]

"""WhatsApp instance lifecycle - provision, reconnect, status, disconnect, delete.

State machine per organization:

    not_configured --provision--> connecting --status: connected--> connected
    connected --disconnect--> disconnected --reconnect--> connecting
    any --delete--> not_configured

Consistency model:
- No transaction spans a gateway call and a store write. Each store write is
  its own short transaction.
- Provisioning failures after the remote instance exists trigger one
  best-effort remote delete (compensation), then the failure is surfaced.
- Status reads degrade to the last stored state when the gateway fails.
- Disconnect/delete always converge locally, whatever the gateway answers.
- Concurrent requests for the same organization are not serialized; the last
  write wins.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterator

import psycopg2
from psycopg2.extensions import cursor as PgCursor

from batepapo.domain.reconcile import InstanceState, reconcile
from batepapo.gateway.client import GatewayClient, GatewayError
from batepapo.gateway.models import GatewayStatus
from batepapo.infra.db import txn
from batepapo.infra.repositories.instances_repository import (
    InstanceRecord,
    delete_instance as delete_instance_row,
    get_instance_by_org,
    insert_instance,
    mark_connecting,
    mark_disconnected,
    update_instance_state,
)
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

logger = get_logger(__name__)

MANAGE_ROLES = ("owner", "manager")

NOT_CONFIGURED = "not_configured"


class InstanceError(Exception):
    """Base class for instance lifecycle errors."""

    pass


class ForbiddenError(InstanceError):
    """Caller's organization role may not manage the instance."""

    pass


class NotFoundError(InstanceError):
    """No instance (or other tenant-scoped record) exists."""

    pass


class ConflictError(InstanceError):
    """The organization already has an instance."""

    pass


class PersistenceError(InstanceError):
    """A store write failed."""

    pass


@dataclass(frozen=True)
class StepResult:
    """Outcome of a best-effort gateway step. Never raised, only reported."""

    step: str
    ok: bool
    error: str | None = None


def instance_name_for(organization_id: str) -> str:
    """Gateway instance name: org_ + first segment of the organization UUID."""
    return f"org_{organization_id.split('-')[0]}"


def require_manage_role(role: str) -> None:
    """Raise ForbiddenError unless role is owner or manager."""
    if role not in MANAGE_ROLES:
        raise ForbiddenError("Only owners/managers can manage WhatsApp")


def best_effort(step: str, action: Callable[[], object], *, organization_id: str) -> StepResult:
    """Run a gateway call whose failure must not escalate.

    Gateway failures are logged and reported in the StepResult.
    """
    try:
        action()
    except GatewayError as e:
        logger.warning(
            "best-effort gateway step failed",
            extra={
                "extra_fields": safe_log_context(
                    step=step,
                    organization_id=organization_id,
                    status_code=e.status_code,
                )
            },
        )
        return StepResult(step=step, ok=False, error=str(e))
    return StepResult(step=step, ok=True)


@contextmanager
def _store_write(action: str, *, organization_id: str) -> Iterator[PgCursor]:
    """Transaction for a store write; database errors become PersistenceError."""
    try:
        with txn() as cur:
            yield cur
    except psycopg2.Error as e:
        logger.error(
            "instance store write failed",
            extra={
                "extra_fields": safe_log_context(
                    action=action,
                    organization_id=organization_id,
                    error_type=type(e).__name__,
                )
            },
        )
        raise PersistenceError(f"Failed to {action}") from e


def load_instance(organization_id: str) -> InstanceRecord | None:
    """Fetch the stored instance for an organization."""
    with txn() as cur:
        return get_instance_by_org(cur, organization_id)


def _require_instance(organization_id: str) -> InstanceRecord:
    record = load_instance(organization_id)
    if record is None:
        raise NotFoundError("No instance found")
    return record


def public_view(record: InstanceRecord) -> dict:
    """Tenant-facing representation of an instance. Never includes the token."""
    return {
        "id": record.id,
        "instance_name": record.instance_name,
        "status": record.status,
        "phone_number": record.phone_number,
        "webhook_configured": record.webhook_configured,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "last_connected_at": (
            record.last_connected_at.isoformat() if record.last_connected_at else None
        ),
    }


def get_instance(organization_id: str) -> dict:
    """Return the stored instance for an organization, without touching the gateway."""
    record = load_instance(organization_id)
    if record is None:
        return {"configured": False, "status": NOT_CONFIGURED}
    return {"configured": True, "instance": public_view(record)}


def provision_instance(
    *,
    organization_id: str,
    role: str,
    gateway: GatewayClient,
    webhook_url: str,
) -> dict:
    """Create the organization's instance and start its first connection.

    Steps: create remote instance -> configure webhook -> connect (QR) ->
    insert row as `connecting`. Once the remote instance exists, any later
    failure triggers one best-effort remote delete before surfacing.

    Args:
        organization_id: Organization UUID.
        role: Caller's role in the organization.
        gateway: Gateway client.
        webhook_url: Callback URL registered with the gateway.

    Returns:
        Dict with instance view, qrcode and pairingCode.

    Raises:
        ForbiddenError: Role is not owner/manager.
        ConflictError: The organization already has an instance.
        GatewayError: Any gateway step failed.
        PersistenceError: The row could not be stored.
    """
    require_manage_role(role)

    if load_instance(organization_id) is not None:
        raise ConflictError("Instance already exists. Use connect endpoint instead.")

    instance_name = instance_name_for(organization_id)
    log_ctx = safe_log_context(organization_id=organization_id, instance_name=instance_name)

    logger.info("provisioning whatsapp instance", extra={"extra_fields": log_ctx})
    created = gateway.create_instance(instance_name)

    def compensate() -> StepResult:
        return best_effort(
            "compensating_delete",
            lambda: gateway.delete_instance(created.token),
            organization_id=organization_id,
        )

    try:
        gateway.configure_webhook(created.token, webhook_url)
        connect_result = gateway.connect(created.token)
    except GatewayError:
        compensate()
        raise

    try:
        with _store_write("save instance", organization_id=organization_id) as cur:
            record = insert_instance(
                cur,
                organization_id=organization_id,
                instance_name=instance_name,
                instance_token=created.token,
                status="connecting",
                webhook_configured=True,
            )
    except PersistenceError:
        compensate()
        raise

    logger.info("whatsapp instance provisioned", extra={"extra_fields": log_ctx})

    return {
        "configured": True,
        "status": record.status,
        "instance": public_view(record),
        "qrcode": connect_result.qrcode,
        "pairingCode": connect_result.pairing_code,
    }


def reconnect_instance(*, organization_id: str, gateway: GatewayClient) -> dict:
    """Generate a new QR/pairing code for an existing instance.

    No-op when the stored status is already `connected`.

    Raises:
        NotFoundError: No instance configured.
        GatewayError: The connect call failed.
        PersistenceError: The status could not be stored.
    """
    record = _require_instance(organization_id)

    if record.status == "connected":
        return {"status": "connected", "message": "Already connected"}

    connect_result = gateway.connect(record.instance_token)

    with _store_write("mark instance connecting", organization_id=organization_id) as cur:
        mark_connecting(cur, instance_id=record.id)

    return {
        "status": "connecting",
        "qrcode": connect_result.qrcode,
        "pairingCode": connect_result.pairing_code,
    }


def sync_instance_state(
    record: InstanceRecord,
    observed: GatewayStatus,
    *,
    now: datetime,
) -> tuple[InstanceState, bool]:
    """Reconcile a stored instance with an observed gateway status, persisting on change.

    Args:
        record: Stored instance row.
        observed: GatewayStatus from a status poll or a connection webhook.
        now: Clock for last_connected_at.

    Returns:
        Tuple of (state, changed).

    Raises:
        PersistenceError: The reconciled state could not be stored.
    """
    stored = InstanceState(
        status=record.status,
        phone_number=record.phone_number,
        last_connected_at=record.last_connected_at,
    )
    new_state, changed = reconcile(stored, observed, now=now)

    if changed:
        with _store_write("update instance status", organization_id=record.organization_id) as cur:
            update_instance_state(
                cur,
                instance_id=record.id,
                status=new_state.status,
                phone_number=new_state.phone_number,
                last_connected_at=new_state.last_connected_at,
            )
        logger.info(
            "instance status reconciled",
            extra={
                "extra_fields": safe_log_context(
                    organization_id=record.organization_id,
                    from_status=stored.status,
                    to_status=new_state.status,
                )
            },
        )

    return new_state, changed


def read_status(
    *,
    organization_id: str,
    gateway: GatewayClient,
    now: datetime | None = None,
) -> dict:
    """Live status for an organization's instance, reconciled into the store.

    On gateway failure the last stored status is returned flagged as
    `degraded`: reconciliation did not happen and the store is untouched.

    Raises:
        PersistenceError: The reconciled state could not be stored.
    """
    record = load_instance(organization_id)
    if record is None:
        return {"configured": False, "status": NOT_CONFIGURED}

    try:
        observed = gateway.get_status(record.instance_token)
    except GatewayError as e:
        logger.warning(
            "status read degraded to stored state",
            extra={
                "extra_fields": safe_log_context(
                    organization_id=organization_id,
                    status_code=e.status_code,
                )
            },
        )
        return {
            "configured": True,
            "status": record.status,
            "phone_number": record.phone_number,
            "instance_name": record.instance_name,
            "degraded": True,
            "error": "Could not reach WhatsApp gateway",
        }

    state, _ = sync_instance_state(record, observed, now=now or datetime.now(timezone.utc))

    return {
        "configured": True,
        "status": state.status,
        "phone_number": state.phone_number,
        "qrcode": observed.qrcode,
        "pairingCode": observed.pairing_code,
        "instance_name": record.instance_name,
        "degraded": False,
    }


def disconnect_instance(*, organization_id: str, role: str, gateway: GatewayClient) -> dict:
    """Disconnect WhatsApp. Stored state always ends `disconnected` with no phone.

    Raises:
        ForbiddenError: Role is not owner/manager.
        NotFoundError: No instance configured.
        PersistenceError: The status could not be stored.
    """
    require_manage_role(role)
    record = _require_instance(organization_id)

    step = best_effort(
        "disconnect",
        lambda: gateway.disconnect(record.instance_token),
        organization_id=organization_id,
    )

    with _store_write("mark instance disconnected", organization_id=organization_id) as cur:
        mark_disconnected(cur, instance_id=record.id)

    return {
        "success": True,
        "message": "WhatsApp disconnected",
        "remote_acknowledged": step.ok,
    }


def delete_instance(*, organization_id: str, role: str, gateway: GatewayClient) -> dict:
    """Tear the instance down. The local row is always removed.

    A remote instance that is already gone is not an error.

    Raises:
        ForbiddenError: Role is not owner/manager.
        NotFoundError: No instance configured.
        PersistenceError: The row could not be deleted.
    """
    require_manage_role(role)
    record = _require_instance(organization_id)

    step = best_effort(
        "delete_instance",
        lambda: gateway.delete_instance(record.instance_token),
        organization_id=organization_id,
    )

    with _store_write("delete instance", organization_id=organization_id) as cur:
        delete_instance_row(cur, instance_id=record.id)

    logger.info(
        "whatsapp instance deleted",
        extra={
            "extra_fields": safe_log_context(
                organization_id=organization_id,
                remote_acknowledged=step.ok,
            )
        },
    )

    return {
        "success": True,
        "message": "Instance deleted",
        "remote_acknowledged": step.ok,
    }

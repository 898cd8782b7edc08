"""WhatsApp instance endpoints for the CRM dashboard.

Every endpoint is scoped to one organization (`organization_id` query param)
and requires membership. Provision, disconnect and delete additionally
require owner or manager.

Error mapping:
- ForbiddenError -> 403
- NotFoundError -> 404
- ConflictError -> 409
- NotConnectedError / InvalidMessageError -> 400
- GatewayError -> 502
- PersistenceError -> 500
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from batepapo.api.rbac import OrgRoleContext, require_org_role
from batepapo.domain import instances, messaging
from batepapo.domain.instances import (
    ConflictError,
    ForbiddenError,
    InstanceError,
    NotFoundError,
    PersistenceError,
)
from batepapo.domain.messaging import InvalidMessageError, NotConnectedError
from batepapo.gateway.client import GatewayClient, GatewayError
from batepapo.gateway.config import GatewayConfig, resolve_webhook_url
from batepapo.observability.correlation import get_correlation_id
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])

logger = get_logger(__name__)


def get_gateway() -> GatewayClient:
    """Gateway client dependency (overridden in tests)."""
    try:
        config = GatewayConfig.from_env()
    except RuntimeError:
        logger.error("whatsapp gateway not configured")
        raise HTTPException(status_code=500, detail="WhatsApp gateway not configured")
    return GatewayClient(config)


_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (NotConnectedError, 400),
    (InvalidMessageError, 400),
    (PersistenceError, 500),
]


def _http_error(exc: Exception, *, action: str, organization_id: str) -> HTTPException:
    """Translate a domain or gateway error into an HTTPException."""
    if isinstance(exc, GatewayError):
        logger.error(
            "whatsapp gateway call failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    action=action,
                    organization_id=organization_id,
                    status_code=exc.status_code,
                )
            },
        )
        return HTTPException(status_code=502, detail="WhatsApp gateway error")

    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")


class SendMessageRequest(BaseModel):
    """Request body for POST /whatsapp/send."""

    contact_id: str
    message: str | None = None
    type: Literal["text", "image"] = "text"
    media_url: str | None = None


@router.get("/instance")
def get_instance(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
) -> dict:
    """Stored instance for the organization. Does not call the gateway."""
    return instances.get_instance(ctx.organization_id)


@router.post("/instance")
def create_instance(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    """Provision the organization's instance and return the first QR code."""
    try:
        return instances.provision_instance(
            organization_id=ctx.organization_id,
            role=ctx.role,
            gateway=gateway,
            webhook_url=resolve_webhook_url(),
        )
    except (InstanceError, GatewayError) as e:
        raise _http_error(e, action="provision", organization_id=ctx.organization_id)


@router.delete("/instance")
def delete_instance(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    try:
        return instances.delete_instance(
            organization_id=ctx.organization_id,
            role=ctx.role,
            gateway=gateway,
        )
    except InstanceError as e:
        raise _http_error(e, action="delete", organization_id=ctx.organization_id)


@router.get("/status")
def get_status(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    """Live connection status, reconciled into the store.

    Falls back to the stored status (`degraded: true`) when the gateway is
    unreachable.
    """
    try:
        return instances.read_status(organization_id=ctx.organization_id, gateway=gateway)
    except InstanceError as e:
        raise _http_error(e, action="status", organization_id=ctx.organization_id)


@router.post("/connect")
def connect(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    """New QR/pairing code for an existing instance."""
    try:
        return instances.reconnect_instance(organization_id=ctx.organization_id, gateway=gateway)
    except (InstanceError, GatewayError) as e:
        raise _http_error(e, action="connect", organization_id=ctx.organization_id)


@router.post("/disconnect")
def disconnect(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    try:
        return instances.disconnect_instance(
            organization_id=ctx.organization_id,
            role=ctx.role,
            gateway=gateway,
        )
    except InstanceError as e:
        raise _http_error(e, action="disconnect", organization_id=ctx.organization_id)


@router.post("/send")
def send_message(
    body: SendMessageRequest,
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    """Send a text or image message to a CRM contact."""
    try:
        return messaging.send_message(
            organization_id=ctx.organization_id,
            user_id=ctx.user.id,
            contact_id=body.contact_id,
            message=body.message,
            message_type=body.type,
            media_url=body.media_url,
            gateway=gateway,
        )
    except (InstanceError, GatewayError) as e:
        raise _http_error(e, action="send", organization_id=ctx.organization_id)


@router.get("/contacts")
def list_contacts(
    ctx: OrgRoleContext = Depends(require_org_role("attendant")),
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    """Contacts from the connected phone."""
    try:
        contacts = messaging.list_phone_contacts(
            organization_id=ctx.organization_id,
            gateway=gateway,
        )
    except (InstanceError, GatewayError) as e:
        raise _http_error(e, action="contacts", organization_id=ctx.organization_id)
    return {"contacts": contacts}

"""Outbound messaging and phone contacts through the organization's instance.

Both operations require the stored instance to be `connected`; the gateway
client itself does not enforce it.

Security: NEVER log phone numbers or message text.
"""

from __future__ import annotations

from batepapo.domain.instances import (
    InstanceError,
    NotFoundError,
    _store_write,
    load_instance,
)
from batepapo.gateway.client import GatewayClient, GatewayError
from batepapo.infra.db import txn
from batepapo.infra.repositories.contacts_repository import get_contact
from batepapo.infra.repositories.instances_repository import InstanceRecord
from batepapo.infra.repositories.messages_repository import (
    insert_message,
    update_message_status,
)
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

logger = get_logger(__name__)

SUPPORTED_TYPES = ("text", "image")


class NotConnectedError(InstanceError):
    """The instance exists but is not connected."""

    pass


class InvalidMessageError(InstanceError):
    """The message request is incomplete or of an unsupported type."""

    pass


def require_connected(organization_id: str) -> InstanceRecord:
    """Return the organization's instance, which must be `connected`.

    Raises:
        NotFoundError: WhatsApp not configured.
        NotConnectedError: Instance exists but is not connected.
    """
    record = load_instance(organization_id)
    if record is None:
        raise NotFoundError("WhatsApp not configured")
    if record.status != "connected":
        raise NotConnectedError("WhatsApp is not connected")
    return record


def send_message(
    *,
    organization_id: str,
    user_id: str,
    contact_id: str,
    message: str | None,
    gateway: GatewayClient,
    message_type: str = "text",
    media_url: str | None = None,
) -> dict:
    """Send a message to a CRM contact and record it in the chat history.

    The message row is stored as `sending` before the gateway call and then
    moved to `sent` or `failed`.

    Returns:
        Dict with the stored message id and the gateway message id.

    Raises:
        InvalidMessageError: Missing content or unsupported type.
        NotFoundError: WhatsApp not configured or contact not in organization.
        NotConnectedError: Instance not connected.
        GatewayError: The send failed (message stored as `failed`).
        PersistenceError: The message could not be stored.
    """
    if message_type not in SUPPORTED_TYPES:
        raise InvalidMessageError("Unsupported message type")
    if not message and not media_url:
        raise InvalidMessageError("message or media_url is required")
    if message_type == "image" and not media_url:
        raise InvalidMessageError("media_url is required for image messages")
    if message_type == "text" and not message:
        raise InvalidMessageError("message is required for text messages")

    record = require_connected(organization_id)

    with txn() as cur:
        contact = get_contact(cur, organization_id=organization_id, contact_id=contact_id)
    if contact is None:
        raise NotFoundError("Contact not found")

    with _store_write("save message", organization_id=organization_id) as cur:
        message_id = insert_message(
            cur,
            organization_id=organization_id,
            contact_id=contact_id,
            sender_type="user",
            sender_id=user_id,
            body=message or None,
            media_url=media_url,
            media_type=message_type if message_type != "text" else None,
            status="sending",
        )

    log_ctx = safe_log_context(
        organization_id=organization_id,
        message_id=message_id,
        message_type=message_type,
        text_len=len(message or ""),
    )

    try:
        if message_type == "text":
            sent = gateway.send_text(record.instance_token, contact["phone"], message)
        else:
            sent = gateway.send_image(record.instance_token, contact["phone"], media_url, message)
    except GatewayError:
        with _store_write("mark message failed", organization_id=organization_id) as cur:
            update_message_status(cur, message_id=message_id, status="failed")
        logger.error("outbound message failed", extra={"extra_fields": log_ctx})
        raise

    with _store_write("mark message sent", organization_id=organization_id) as cur:
        update_message_status(
            cur,
            message_id=message_id,
            status="sent",
            whatsapp_id=sent.message_id,
        )

    logger.info("outbound message sent", extra={"extra_fields": log_ctx})

    return {"success": True, "message_id": message_id, "whatsapp_id": sent.message_id}


def list_phone_contacts(*, organization_id: str, gateway: GatewayClient) -> list[dict]:
    """Contacts stored on the connected phone (groups excluded).

    Raises:
        NotFoundError / NotConnectedError: see require_connected.
        GatewayError: The gateway call failed.
    """
    record = require_connected(organization_id)
    contacts = gateway.get_contacts(record.instance_token)
    return [
        {
            "id": c.id,
            "name": c.name,
            "phone": c.phone,
            "profilePicUrl": c.profile_pic_url,
        }
        for c in contacts
    ]

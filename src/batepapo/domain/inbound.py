"""Gateway webhook ingestion - connection updates and inbound messages.

Connection events go through the same reconciler as status polls, so a
webhook and a poll observing the same state never both write.

Security: NEVER log phone numbers, push names or message text.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from batepapo.domain.instances import NotFoundError, _store_write, sync_instance_state
from batepapo.gateway.webhook import (
    InboundMessage,
    is_connection_event,
    is_message_event,
    parse_connection_event,
    parse_message_event,
)
from batepapo.infra.db import txn
from batepapo.infra.repositories.contacts_repository import find_or_create_contact
from batepapo.infra.repositories.instances_repository import (
    InstanceRecord,
    get_instance_by_token,
)
from batepapo.infra.repositories.messages_repository import insert_message
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

logger = get_logger(__name__)


def resolve_instance(instance_token: str | None) -> InstanceRecord:
    """Find the instance a webhook belongs to.

    Raises:
        NotFoundError: Token missing or not bound to any stored instance.
    """
    if not instance_token:
        raise NotFoundError("Instance not found")
    with txn() as cur:
        record = get_instance_by_token(cur, instance_token)
    if record is None:
        raise NotFoundError("Instance not found")
    return record


def store_inbound_message(record: InstanceRecord, inbound: InboundMessage) -> dict:
    """Attach a message to its contact (created on first contact) in one transaction."""
    with _store_write("save inbound message", organization_id=record.organization_id) as cur:
        contact_id, created = find_or_create_contact(
            cur,
            organization_id=record.organization_id,
            phone=inbound.phone,
            name=inbound.push_name,
        )
        message_id = insert_message(
            cur,
            organization_id=record.organization_id,
            contact_id=contact_id,
            sender_type="user" if inbound.from_me else "contact",
            status="sent" if inbound.from_me else "received",
            body=inbound.body,
            media_url=inbound.media_url,
            media_type=inbound.media_type,
            whatsapp_id=inbound.message_id,
        )

    logger.info(
        "inbound message stored",
        extra={
            "extra_fields": safe_log_context(
                organization_id=record.organization_id,
                message_id=message_id,
                contact_created=created,
                from_me=inbound.from_me,
                media_type=inbound.media_type,
            )
        },
    )
    return {"message_id": message_id, "contact_id": contact_id}


def handle_webhook(
    payload: dict[str, Any],
    *,
    instance_token: str | None,
    now: datetime | None = None,
) -> dict:
    """Apply one webhook event to the store.

    Returns:
        Dict acknowledging the event and what was done with it.

    Raises:
        NotFoundError: Unknown instance token.
        InvalidPayloadError: Malformed event body.
        PersistenceError: The store write failed.
    """
    record = resolve_instance(instance_token)

    if is_message_event(payload):
        inbound = parse_message_event(payload)
        if inbound is None:
            return {"success": True, "handled": "ignored"}
        result = store_inbound_message(record, inbound)
        return {"success": True, "handled": "message", **result}

    if is_connection_event(payload):
        observed = parse_connection_event(payload)
        state, changed = sync_instance_state(record, observed, now=now or datetime.now(timezone.utc))
        return {
            "success": True,
            "handled": "connection",
            "status": state.status,
            "changed": changed,
        }

    logger.debug(
        "webhook event acknowledged",
        extra={
            "extra_fields": safe_log_context(
                organization_id=record.organization_id,
                event=str(payload.get("event") or "unknown"),
            )
        },
    )
    return {"success": True, "handled": "ignored"}

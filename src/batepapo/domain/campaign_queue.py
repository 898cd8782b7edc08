"""Campaign queue processor - sends one small batch of campaign messages.

Triggered periodically by cron. Each invocation:
1. Fetches up to `batch_size` pending items (oldest first)
2. Sends each rendered template through the organization's instance
3. Marks each item sent or failed, pausing between sends

There is no lock: two overlapping invocations may pick the same items. An
interrupted batch leaves unprocessed items `pending`.
"""

from __future__ import annotations

import time
from typing import Callable

from batepapo.domain.instances import InstanceError, PersistenceError, _store_write, load_instance
from batepapo.gateway.client import GatewayClient, GatewayError
from batepapo.infra.db import txn
from batepapo.infra.repositories.campaign_queue_repository import (
    QueueItem,
    fetch_pending,
    mark_failed,
    mark_sent,
)
from batepapo.infra.repositories.contacts_repository import get_contact
from batepapo.infra.repositories.instances_repository import InstanceRecord
from batepapo.infra.repositories.messages_repository import insert_message
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

logger = get_logger(__name__)

BATCH_SIZE = 5
THROTTLE_SECONDS = 1.0

NAME_PLACEHOLDER = "{{nome}}"
DEFAULT_CONTACT_NAME = "Cliente"


class DeliveryError(Exception):
    """A queue item cannot be delivered."""

    pass


def render_template(template: str, contact_name: str | None) -> str:
    """Replace every {{nome}} with the contact's name."""
    return template.replace(NAME_PLACEHOLDER, contact_name or DEFAULT_CONTACT_NAME)


def _deliver(item: QueueItem, instance: InstanceRecord | None, gateway: GatewayClient) -> str:
    """Send one item and record it in the chat history. Returns the message id."""
    if instance is None or instance.status != "connected":
        raise DeliveryError("WhatsApp is not connected")

    with txn() as cur:
        contact = get_contact(cur, organization_id=item.organization_id, contact_id=item.contact_id)
    if contact is None:
        raise DeliveryError("Contact not found")

    text = render_template(item.message_template, contact["name"])
    sent = gateway.send_text(instance.instance_token, contact["phone"], text)

    with _store_write("save campaign message", organization_id=item.organization_id) as cur:
        message_id = insert_message(
            cur,
            organization_id=item.organization_id,
            contact_id=item.contact_id,
            sender_type="user",
            status="sent",
            body=text,
            whatsapp_id=sent.message_id,
        )
        mark_sent(cur, item_id=item.id)
    return message_id


def process_queue(
    *,
    gateway: GatewayClient,
    batch_size: int = BATCH_SIZE,
    throttle_seconds: float = THROTTLE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """Process one batch of the campaign queue.

    Args:
        gateway: Gateway client used for sending.
        batch_size: Max items per invocation.
        throttle_seconds: Pause between consecutive sends.
        sleep: Sleeper, injectable for tests.

    Returns:
        {"message": "Queue empty"} or {"processed": n, "details": [...]}.
    """
    with txn() as cur:
        items = fetch_pending(cur, limit=batch_size)

    if not items:
        return {"message": "Queue empty"}

    instances: dict[str, InstanceRecord | None] = {}
    details = []

    for index, item in enumerate(items):
        if index > 0:
            sleep(throttle_seconds)

        if item.organization_id not in instances:
            instances[item.organization_id] = load_instance(item.organization_id)

        log_ctx = safe_log_context(
            organization_id=item.organization_id,
            campaign_id=item.campaign_id,
            item_id=item.id,
        )

        try:
            message_id = _deliver(item, instances[item.organization_id], gateway)
        except (DeliveryError, GatewayError, InstanceError) as e:
            attempts = item.attempt_count + 1
            marked = True
            try:
                with _store_write("mark campaign item failed", organization_id=item.organization_id) as cur:
                    mark_failed(cur, item_id=item.id, attempt_count=attempts)
            except PersistenceError:
                # Item stays pending and is picked up by a later batch.
                marked = False
            logger.warning(
                "campaign delivery failed",
                extra={
                    "extra_fields": {
                        **log_ctx,
                        "error_type": type(e).__name__,
                        "attempts": attempts,
                        "marked_failed": marked,
                    }
                },
            )
            details.append({"id": item.id, "status": "failed", "error": str(e)})
            continue

        logger.info("campaign message sent", extra={"extra_fields": log_ctx})
        details.append({"id": item.id, "status": "sent", "message_id": message_id})

    return {"processed": len(items), "details": details}

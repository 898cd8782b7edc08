"""Gateway webhook payloads - validate and normalize.

The gateway posts two families of events to the same URL:
- connection: {"event": "connection", "status": "...", "phone": "..."}
- messages:   {"event": "messages", "data": {"key": {...}, "message": {...}}}
"""

from dataclasses import dataclass
from typing import Any

from batepapo.infra.phone import is_group_jid, to_contact_phone

from .models import GatewayStatus, normalize_status

CONNECTION_EVENTS = ("connection", "connection.update")
MESSAGE_EVENTS = ("messages", "messages.upsert")


class InvalidPayloadError(Exception):
    """Raised when a webhook payload has invalid shape."""

    pass


@dataclass(frozen=True)
class InboundMessage:
    """Normalized message event.

    PII: `phone` and `body` must never be logged.
    """

    message_id: str | None
    phone: str
    push_name: str | None
    from_me: bool
    body: str | None
    media_url: str | None
    media_type: str | None


def is_connection_event(payload: dict[str, Any]) -> bool:
    return bool(payload.get("status")) or payload.get("event") in CONNECTION_EVENTS


def is_message_event(payload: dict[str, Any]) -> bool:
    """True for message events, named or recognized by a keyed `data` object.

    Raises:
        InvalidPayloadError: If `data.key` is present but not an object.
    """
    if payload.get("event") in MESSAGE_EVENTS:
        return True
    data = payload.get("data")
    if not isinstance(data, dict):
        return False
    key = data.get("key")
    if key is None:
        return False
    if not isinstance(key, dict):
        raise InvalidPayloadError("data.key must be an object")
    return bool(key.get("remoteJid"))


def parse_connection_event(payload: dict[str, Any]) -> GatewayStatus:
    """Read the observed connection state from a connection event.

    A connection event without a status means the session dropped.
    """
    phone = payload.get("phone")
    if phone is not None and not isinstance(phone, str):
        raise InvalidPayloadError("invalid phone")
    return GatewayStatus(status=normalize_status(payload.get("status")), phone=phone or None)


def _part(message: dict[str, Any], name: str) -> dict[str, Any] | None:
    part = message.get(name)
    if not part:
        return None
    if not isinstance(part, dict):
        raise InvalidPayloadError(f"message.{name} must be an object")
    return part


def _text(source: dict[str, Any], field: str) -> str | None:
    value = source.get(field)
    if not value:
        return None
    if not isinstance(value, str):
        raise InvalidPayloadError(f"{field} must be a string")
    return value


def _extract_content(message: dict[str, Any]) -> tuple[str | None, str | None, str | None]:
    """Return (body, media_url, media_type) for the supported message kinds.

    Raises:
        InvalidPayloadError: If a message part has the wrong shape.
    """
    conversation = _text(message, "conversation")
    if conversation:
        return conversation, None, None
    extended = _part(message, "extendedTextMessage")
    if extended and _text(extended, "text"):
        return extended["text"], None, None
    image = _part(message, "imageMessage")
    if image:
        return _text(image, "caption"), _text(image, "url"), "image"
    audio = _part(message, "audioMessage")
    if audio:
        return None, _text(audio, "url"), "audio"
    document = _part(message, "documentMessage")
    if document:
        body = _text(document, "caption") or _text(document, "fileName")
        return body, _text(document, "url"), "document"
    return None, None, None


def parse_message_event(payload: dict[str, Any]) -> InboundMessage | None:
    """Normalize a message event.

    Returns:
        InboundMessage, or None for events that carry nothing to store
        (no remoteJid, group chats).

    Raises:
        InvalidPayloadError: If `data`, `data.key` or a message part has the
            wrong shape.
    """
    data = payload.get("data")
    if data is None:
        return None
    if not isinstance(data, dict):
        raise InvalidPayloadError("data must be an object")

    key = data.get("key") or {}
    if not isinstance(key, dict):
        raise InvalidPayloadError("data.key must be an object")

    remote_jid = _text(key, "remoteJid")
    if not remote_jid or is_group_jid(remote_jid):
        return None

    message = data.get("message") or {}
    if not isinstance(message, dict):
        raise InvalidPayloadError("data.message must be an object")
    body, media_url, media_type = _extract_content(message)

    return InboundMessage(
        message_id=_text(key, "id"),
        phone=to_contact_phone(remote_jid),
        push_name=_text(data, "pushName"),
        from_me=bool(key.get("fromMe")),
        body=body,
        media_url=media_url,
        media_type=media_type,
    )

"""Typed results returned by the gateway client."""

from dataclasses import dataclass
from typing import Literal

ConnectionStatus = Literal["disconnected", "connecting", "connected"]

CONNECTION_STATUSES: tuple[str, ...] = ("disconnected", "connecting", "connected")

MediaType = Literal["image", "video", "audio", "ptt", "document"]


def normalize_status(raw: object) -> ConnectionStatus:
    """Map a gateway status string to a known status (unknown -> disconnected)."""
    if isinstance(raw, str) and raw in CONNECTION_STATUSES:
        return raw  # type: ignore[return-value]
    return "disconnected"


@dataclass(frozen=True)
class CreatedInstance:
    """Instance provisioned on the gateway. `token` is a secret."""

    name: str
    token: str


@dataclass(frozen=True)
class ConnectResult:
    """Fresh QR/pairing code. Ephemeral: never persisted."""

    status: str
    qrcode: str | None = None
    pairing_code: str | None = None


@dataclass(frozen=True)
class GatewayStatus:
    """Connection status as observed on the gateway."""

    status: ConnectionStatus
    phone: str | None = None
    qrcode: str | None = None
    pairing_code: str | None = None


@dataclass(frozen=True)
class SentMessage:
    message_id: str | None


@dataclass(frozen=True)
class WhatsAppContact:
    """Contact listed from the connected phone."""

    id: str
    name: str
    phone: str
    profile_pic_url: str | None = None


@dataclass(frozen=True)
class DownloadedMedia:
    base64: str
    mime_type: str

"""HTTP client for the uazapi WhatsApp gateway.

Two credentials are in play:
- admin token (header `admintoken`): fleet-level calls (create, list)
- instance token (header `token`): everything scoped to one instance

Security: NEVER log tokens, phone numbers or message text. Only log paths,
status codes, hashes and lengths.
"""

from __future__ import annotations

import hashlib
from typing import Any

import requests

from batepapo.infra.phone import digits_only, extract_phone_from_jid, is_group_jid, to_jid
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

from .config import SYSTEM_NAME, GatewayConfig
from .models import (
    ConnectResult,
    CreatedInstance,
    DownloadedMedia,
    GatewayStatus,
    MediaType,
    SentMessage,
    WhatsAppContact,
    normalize_status,
)

logger = get_logger(__name__)

WEBHOOK_EVENTS = ["messages", "connection", "messages_update"]
# Messages sent through the API echo back as webhooks; suppress them
WEBHOOK_EXCLUDE_MESSAGES = ["wasSentByApi"]

CONTACTS_LIMIT = 100


class GatewayError(Exception):
    """Raised on non-2xx responses or network failures from the gateway.

    Attributes:
        status_code: Upstream HTTP status, None for network failures.
        body: Upstream response body (truncated), None for network failures.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _token_hash(token: str) -> str:
    """Non-reversible short hash for correlating a token in logs."""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


class GatewayClient:
    """Typed wrapper around the gateway HTTP API.

    Usage:
        client = GatewayClient(GatewayConfig.from_env())
        created = client.create_instance("org_1a2b3c4d")
        client.configure_webhook(created.token, resolve_webhook_url())
        qr = client.connect(created.token)
    """

    def __init__(self, config: GatewayConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    # ── transport ─────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Issue one request. Instance token when given, admin token otherwise.

        Returns:
            Decoded JSON body, or None when the body is empty or not JSON.

        Raises:
            GatewayError: On network failure or non-2xx response.
        """
        headers = {"Accept": "application/json"}
        if token is not None:
            headers["token"] = token
        else:
            headers["admintoken"] = self._config.admin_token
        if json_body is not None:
            headers["Content-Type"] = "application/json"

        url = f"{self._config.base_url}{path}"
        log_ctx = safe_log_context(
            method=method,
            path=path,
            token_hash=_token_hash(token) if token else "admin",
        )

        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                params=params,
                timeout=self._config.timeout,
            )
        except requests.RequestException as e:
            logger.warning(
                "gateway request failed",
                extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
            )
            raise GatewayError(f"{method} {path} failed: {type(e).__name__}") from e

        if not response.ok:
            body = response.text[:500]
            logger.warning(
                "gateway returned error status",
                extra={"extra_fields": {**log_ctx, "status_code": str(response.status_code)}},
            )
            raise GatewayError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        logger.info(
            "gateway request ok",
            extra={"extra_fields": {**log_ctx, "status_code": str(response.status_code)}},
        )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # ── instance management ───────────────────────────────

    def create_instance(self, name: str) -> CreatedInstance:
        """Provision a new remote instance.

        POST /instance/init (admin token). Any non-2xx, including a name
        collision, is a failure.

        Returns:
            CreatedInstance with the gateway-assigned token.
        """
        data = self._request(
            "POST",
            "/instance/init",
            json_body={"name": name, "systemName": SYSTEM_NAME},
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            # Some gateway versions nest the created instance
            nested = data.get("instance") if isinstance(data, dict) else None
            token = nested.get("token") if isinstance(nested, dict) else None
        if not token:
            raise GatewayError("instance created without token in response")
        return CreatedInstance(name=data.get("name") or name, token=token)

    def list_instances(self) -> list[dict[str, Any]]:
        """List every instance visible to the admin token. GET /instance/all."""
        data = self._request("GET", "/instance/all")
        if not isinstance(data, list):
            raise GatewayError("unexpected instance list response")
        return data

    def configure_webhook(self, token: str, url: str) -> None:
        """Register the callback URL and subscribed events. POST /webhook."""
        self._request(
            "POST",
            "/webhook",
            token=token,
            json_body={
                "enabled": True,
                "url": url,
                "events": WEBHOOK_EVENTS,
                "excludeMessages": WEBHOOK_EXCLUDE_MESSAGES,
            },
        )

    def connect(self, token: str) -> ConnectResult:
        """Request a fresh QR/pairing code. POST /instance/connect.

        Safe to repeat: a new call supersedes any previous code.
        """
        data = self._request("POST", "/instance/connect", token=token, json_body={})
        data = data if isinstance(data, dict) else {}
        instance = data.get("instance") if isinstance(data.get("instance"), dict) else {}
        return ConnectResult(
            status=instance.get("status") or "connecting",
            qrcode=instance.get("qrcode") or data.get("qrcode") or None,
            pairing_code=instance.get("paircode") or data.get("paircode") or None,
        )

    def get_status(self, token: str) -> GatewayStatus:
        """Current connection status and phone for an instance.

        The gateway has no per-token status endpoint, so this lists every
        instance under the admin token and matches by token. Callers only
        depend on the returned GatewayStatus.

        Returns:
            GatewayStatus. An instance not (yet) visible remotely reports
            `disconnected` with no code.
        """
        for instance in self.list_instances():
            if isinstance(instance, dict) and instance.get("token") == token:
                return GatewayStatus(
                    status=normalize_status(instance.get("status")),
                    phone=instance.get("owner") or None,
                    qrcode=instance.get("qrcode") or None,
                    pairing_code=instance.get("paircode") or None,
                )
        return GatewayStatus(status="disconnected")

    def disconnect(self, token: str) -> None:
        """Log the instance out of WhatsApp. POST /instance/disconnect."""
        self._request("POST", "/instance/disconnect", token=token)

    def delete_instance(self, token: str) -> None:
        """Delete the remote instance. DELETE /instance."""
        self._request("DELETE", "/instance", token=token)

    # ── messaging ─────────────────────────────────────────

    def send_text(self, token: str, phone: str, text: str) -> SentMessage:
        """Send a text message. POST /send/text."""
        data = self._request(
            "POST",
            "/send/text",
            token=token,
            json_body={"number": to_jid(phone), "text": text},
        )
        return _sent_message(data)

    def send_media(
        self,
        token: str,
        phone: str,
        media_type: MediaType,
        file_url: str,
        caption: str | None = None,
    ) -> SentMessage:
        """Send image/video/audio/ptt/document. POST /send/media."""
        body: dict[str, Any] = {
            "number": digits_only(phone),
            "type": media_type,
            "file": file_url,
        }
        if caption:
            body["text"] = caption
        data = self._request("POST", "/send/media", token=token, json_body=body)
        return _sent_message(data)

    def send_image(self, token: str, phone: str, image_url: str, caption: str | None = None) -> SentMessage:
        return self.send_media(token, phone, "image", image_url, caption)

    def send_voice(self, token: str, phone: str, audio_url: str) -> SentMessage:
        return self.send_media(token, phone, "ptt", audio_url)

    # ── contacts & media ──────────────────────────────────

    def get_contacts(self, token: str) -> list[WhatsAppContact]:
        """Contacts from the connected phone, groups excluded. GET /contacts."""
        data = self._request("GET", "/contacts", token=token)
        contacts: list[WhatsAppContact] = []
        for raw in data or []:
            if not isinstance(raw, dict):
                continue
            jid = raw.get("id") or ""
            if not jid or is_group_jid(jid):
                continue
            phone = extract_phone_from_jid(jid)
            contacts.append(
                WhatsAppContact(
                    id=jid,
                    name=raw.get("name") or raw.get("notify") or phone or "Unknown",
                    phone=phone,
                    profile_pic_url=raw.get("profilePicUrl") or raw.get("image") or None,
                )
            )
            if len(contacts) >= CONTACTS_LIMIT:
                break
        return contacts

    def fetch_profile_picture(self, token: str, phone: str) -> str | None:
        """Profile picture URL for a phone. Best effort: None on any failure."""
        try:
            data = self._request(
                "POST",
                "/misc/downProfile",
                token=token,
                json_body={"phone": to_jid(phone)},
            )
        except GatewayError:
            return None
        if not isinstance(data, dict):
            return None
        return data.get("link") or data.get("url") or data.get("picture") or None

    def download_media(self, token: str, message_id: str) -> DownloadedMedia | None:
        """Download message media as base64. Best effort: None on any failure."""
        try:
            data = self._request(
                "POST",
                "/message/download",
                token=token,
                json_body={"id": message_id, "return_base64": "true"},
            )
        except GatewayError:
            return None
        if not isinstance(data, dict):
            return None
        content = data.get("base64Data") or data.get("base64") or data.get("data")
        if not content:
            return None
        return DownloadedMedia(
            base64=content,
            mime_type=data.get("mimetype") or data.get("mimeType") or "application/octet-stream",
        )


def _sent_message(data: Any) -> SentMessage:
    if not isinstance(data, dict):
        return SentMessage(message_id=None)
    return SentMessage(message_id=data.get("messageId") or data.get("messageid") or data.get("id"))

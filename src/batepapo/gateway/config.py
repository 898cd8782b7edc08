"""WhatsApp gateway (uazapi) configuration.

The gateway client never reads the environment itself: callers build a
GatewayConfig (usually via GatewayConfig.from_env()) and pass it in, so tests
can point the client anywhere.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse

DEFAULT_BASE_URL = "https://atendsoft.uazapi.com"
DEFAULT_TIMEOUT_SECONDS = 15.0

# Name the gateway shows for instances created by this system
SYSTEM_NAME = "crm-batepapo"

# Gateway webhooks must hit a stable production origin. Branch previews and
# staging hosts come and go, so they are never registered.
PRODUCTION_APP_ORIGIN = "https://crm-batepapo.vercel.app"
WEBHOOK_PATH = "/webhooks/whatsapp/uazapi"


@dataclass(frozen=True)
class GatewayConfig:
    """Connection settings for the gateway.

    Attributes:
        base_url: Gateway base URL, without trailing slash.
        admin_token: Fleet-level token (instance create/list).
        timeout: Per-request timeout in seconds.
    """

    base_url: str
    admin_token: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Load config from environment.

        Required env vars:
        - UAZAPI_ADMIN_TOKEN: Admin token for fleet-level calls

        Optional:
        - UAZAPI_BASE_URL: Gateway base URL (default: https://atendsoft.uazapi.com)
        - UAZAPI_TIMEOUT_SECONDS: Request timeout (default: 15)

        Raises:
            RuntimeError: If UAZAPI_ADMIN_TOKEN is not set.
        """
        admin_token = os.environ.get("UAZAPI_ADMIN_TOKEN", "")
        if not admin_token:
            raise RuntimeError("Missing gateway config: UAZAPI_ADMIN_TOKEN")

        base_url = os.environ.get("UAZAPI_BASE_URL") or DEFAULT_BASE_URL
        timeout_raw = os.environ.get("UAZAPI_TIMEOUT_SECONDS", "")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
        except ValueError:
            timeout = DEFAULT_TIMEOUT_SECONDS

        return cls(base_url=base_url.rstrip("/"), admin_token=admin_token, timeout=timeout)


def _is_preview_host(host: str) -> bool:
    """Branch previews (foo-git-branch-team.vercel.app) and staging hosts."""
    host = host.lower()
    return "-git-" in host or host.startswith(("preview.", "staging."))


def resolve_webhook_url(app_url: str | None = None) -> str:
    """Build the callback URL registered with the gateway.

    Args:
        app_url: Public app URL. Defaults to the APP_URL env var. Any scheme
                 is replaced by https.

    Returns:
        Absolute https webhook URL. Falls back to the production origin when
        APP_URL is unset or points at a preview/staging deployment.
    """
    if app_url is None:
        app_url = os.environ.get("APP_URL", "")

    host = app_url.strip()
    if "://" in host:
        host = urlparse(host).netloc
    host = host.strip("/")

    if not host or _is_preview_host(host):
        return f"{PRODUCTION_APP_ORIGIN}{WEBHOOK_PATH}"

    return f"https://{host}{WEBHOOK_PATH}"

"""Authentication for cron-triggered task endpoints.

The scheduler calls with `Authorization: Bearer <CRON_SECRET>`. Fail closed:
with no CRON_SECRET configured every call is rejected.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request

from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

logger = get_logger(__name__)


def extract_bearer_token(request: Request) -> str | None:
    """Token from a `Bearer` Authorization header, None otherwise."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:]  # Remove "Bearer " prefix


def verify_task_auth(request: Request) -> bool:
    """True iff the request carries the configured cron secret."""
    expected = os.environ.get("CRON_SECRET", "")
    if not expected:
        logger.error(
            "CRON_SECRET not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_cron_secret")},
        )
        return False

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False

    if not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning(
            "task auth failed: secret mismatch",
            extra={"extra_fields": safe_log_context(reason="secret_mismatch")},
        )
        return False

    return True

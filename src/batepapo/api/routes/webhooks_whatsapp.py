"""WhatsApp gateway webhook receiver.

The gateway identifies the instance by its token, sent either as the
`X-Instance-Token` header or the `token` query param. Unknown tokens are
rejected; there is no fallback instance.

Security:
- Logs contain NO phone numbers, message text or tokens
"""

from typing import Any

from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.responses import JSONResponse

from batepapo.domain.inbound import handle_webhook
from batepapo.domain.instances import NotFoundError, PersistenceError
from batepapo.gateway.webhook import InvalidPayloadError
from batepapo.observability.correlation import get_correlation_id
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/uazapi")
async def uazapi_webhook(
    request: Request,
    x_instance_token: str | None = Header(None, alias="X-Instance-Token"),
    token: str | None = Query(None),
) -> Response:
    """Receive a gateway event.

    Returns:
        200 with a summary of what was applied.
        400 if the body is not valid JSON or has an invalid shape.
        404 if the instance token is unknown.
        500 if the store write fails (the gateway retries).
    """
    correlation_id = get_correlation_id()

    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    if not isinstance(payload, dict):
        return Response(status_code=400, content="invalid payload shape")

    try:
        result = handle_webhook(payload, instance_token=x_instance_token or token)
    except NotFoundError:
        logger.warning(
            "webhook for unknown instance",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=404, content={"error": "Instance not found"})
    except InvalidPayloadError:
        logger.warning(
            "invalid webhook payload shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload shape")
    except PersistenceError:
        return JSONResponse(status_code=500, content={"error": "Failed to process webhook"})

    logger.info(
        "whatsapp webhook processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                handled=result.get("handled"),
            )
        },
    )
    return JSONResponse(status_code=200, content=result)

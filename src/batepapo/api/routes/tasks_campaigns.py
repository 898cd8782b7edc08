"""Worker route for the cron-triggered campaign queue."""

from fastapi import APIRouter, Depends, HTTPException, Request

from batepapo.api.routes.whatsapp import get_gateway
from batepapo.api.task_auth import verify_task_auth
from batepapo.domain.campaign_queue import process_queue
from batepapo.gateway.client import GatewayClient
from batepapo.observability.correlation import get_correlation_id
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/campaigns", tags=["tasks"])

logger = get_logger(__name__)


def require_task_auth(request: Request) -> None:
    """Reject the call unless it carries the cron secret (checked before the gateway is built)."""
    if not verify_task_auth(request):
        raise HTTPException(status_code=401, detail="unauthorized")


@router.post("/process-queue", dependencies=[Depends(require_task_auth)])
def process_campaign_queue(
    gateway: GatewayClient = Depends(get_gateway),
) -> dict:
    """Send one batch of pending campaign messages.

    Returns:
        {"processed", "details"} or {"message": "Queue empty"}.
    """
    result = process_queue(gateway=gateway)

    logger.info(
        "campaign queue batch processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                processed=result.get("processed", 0),
            )
        },
    )
    return result

"""FastAPI application factory with role-based route mounting.

- public: dashboard API (`/whatsapp/*`) and the gateway webhook
- worker: public routes plus cron-triggered tasks (`/tasks/*`)
"""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from batepapo.observability.correlation import (
    CORRELATION_ID_HEADER,
    reset_correlation_id,
    resolve_correlation_id,
    set_correlation_id,
)

from .routers import public, worker
from .routes import me, tasks_campaigns, webhooks_whatsapp, whatsapp

AppRole = Literal["public", "worker"]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(
        title="Batepapo CRM",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(public.router)
    app.include_router(me.router)
    app.include_router(whatsapp.router)
    app.include_router(webhooks_whatsapp.router)

    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_campaigns.router)

    return app

"""HTTP surface for the Clerk customer sync service.

One FastAPI app serves ``POST /clerk-sync`` plus the health and version routes,
locally under uvicorn and on Lambda through Mangum. Every request is logged
as one JSON line; Svix deliveries also carry their ``svix-id`` so a retried
delivery can be traced across log lines.
"""

import asyncio
import json
import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from mangum import Mangum

from customer_sync.config import get_settings
from customer_sync.routers import clerk_sync_router
from customer_sync.verifier import SVIX_ID_HEADER

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("customer_sync.http")


def _json_log(fields):
    return json.dumps(fields, separators=(",", ":"))


def _request_id(request: Request) -> str:
    return (
        request.headers.get("x-correlation-id")
        or request.headers.get("x-request-id")
        or str(uuid.uuid4())
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Customer Sync",
        description="Mirrors Clerk user lifecycle webhooks into the customer table.",
        version=os.environ.get("VERSION", "dev"),
    )

    @app.middleware("http")
    async def log_delivery(request: Request, call_next):
        request_id = _request_id(request)
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["x-request-id"] = request_id

        fields = {
            "event": "request",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "elapsed_ms": round(elapsed_ms, 2),
        }
        svix_id = request.headers.get(SVIX_ID_HEADER)
        if svix_id:
            fields["svix_id"] = svix_id
        logger.info(_json_log(fields))
        return response

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/version")
    async def version():
        return {"version": os.environ.get("VERSION", "dev")}

    app.include_router(clerk_sync_router)

    return app


app = create_app()

_lambda_adapter = None


def _get_lambda_adapter():
    global _lambda_adapter
    if _lambda_adapter is not None:
        return _lambda_adapter

    # Mangum needs a current event loop when it is constructed.
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())

    # Settings load once per container, before the first delivery.
    get_settings()
    _lambda_adapter = Mangum(app, lifespan="off")
    return _lambda_adapter


# Lambda entrypoint behind the API Gateway route that Clerk delivers to.
def handler(event, context):
    return _get_lambda_adapter()(event, context)

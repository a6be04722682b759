import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status as http_status

from customer_sync.customer_store import get_customer_store
from customer_sync.errors import ConfigurationError, PayloadShapeError, SignatureError
from customer_sync.reconciler import CustomerReconciler
from customer_sync.schemas import ClerkSyncResponse
from customer_sync.verifier import ClerkWebhookVerifier, get_clerk_webhook_verifier

router = APIRouter(tags=["clerk-sync"])
logger = logging.getLogger("customer_sync.routers.clerk_sync")


def _json_log(fields):
    return json.dumps(fields, separators=(",", ":"))


def _require_clerk_webhook_verifier() -> ClerkWebhookVerifier:
    try:
        return get_clerk_webhook_verifier()
    except ConfigurationError as exc:
        logger.error("Clerk webhook is not configured: %s", exc)
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured",
        ) from exc


# Public endpoint: authenticity comes from the Svix signature, not a bearer token.
@router.post("/clerk-sync", response_model=ClerkSyncResponse)
async def clerk_sync_webhook(
    request: Request,
    verifier: ClerkWebhookVerifier = Depends(_require_clerk_webhook_verifier),
    customer_store=Depends(get_customer_store),
):
    raw_payload = await request.body()

    try:
        event = verifier.verify(raw_payload, request.headers)
    except SignatureError as exc:
        logger.warning("Clerk webhook signature verification failed: %s", exc)
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc
    except PayloadShapeError as exc:
        logger.warning("Clerk webhook payload rejected: %s", exc)
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from exc
    except ConfigurationError as exc:
        logger.error("Clerk webhook is not configured: %s", exc)
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured",
        ) from exc

    try:
        outcome = CustomerReconciler(customer_store).reconcile(event)
    except PayloadShapeError as exc:
        logger.warning("Clerk webhook missing user data: %s", exc)
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from exc
    except Exception as exc:
        # StoreError and anything unexpected.
        logger.exception("Clerk webhook handler error (svix_id=%s)", event.svix_id)
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler error",
        ) from exc

    logger.info(
        _json_log(
            {
                "event": "clerk_sync",
                "svix_id": event.svix_id,
                "event_type": event.raw_type,
                "status": outcome.status.value,
                "customer_id": outcome.customer_id,
                "reason": outcome.reason,
            }
        )
    )
    return ClerkSyncResponse(ok=True, status=outcome.status)

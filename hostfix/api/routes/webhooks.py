"""Payment provider webhooks.

Endpoints:
    POST /v1/webhooks/stripe    Signed Stripe events

The signature is verified against the raw request body, so the body must
not be parsed before construct_event. Handlers are idempotent; a handler
error returns 500 so Stripe redelivers the event.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from hostfix.billing.events import handle_event
from hostfix.errors import HostfixError, ValidationError
from hostfix.integrations.payments import get_payment_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = get_payment_client().construct_event(payload, signature)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except HostfixError as e:
        logger.error(f"Webhook received but cannot be verified: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    try:
        handled = await run_in_threadpool(handle_event, event)
    except HostfixError as e:
        logger.error(f"Error handling webhook {event['type']}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook handler failed") from e

    return {"received": True, "handled": handled}

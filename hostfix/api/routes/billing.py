"""Billing routes.

Endpoints:
    GET  /v1/billing/status            Hosting subscription + fix pricing
    GET  /v1/billing/invoices          Invoice history
    GET  /v1/billing/fix-price         Price of the caller's next fix
    POST /v1/billing/create-checkout   Start the hosting subscription checkout
"""

import logging

from fastapi import APIRouter, Depends

from hostfix.api.deps import get_current_user, http_error
from hostfix.billing.customers import ensure_customer
from hostfix.billing.pricing import PROMOTIONAL_FIX_LIMIT, format_price, get_fix_price, is_promotional
from hostfix.billing.schemas import CreateCheckoutRequest, FixPriceResponse, SubscriptionStatus
from hostfix.errors import HostfixError
from hostfix.integrations.payments import get_payment_client
from hostfix.projects.service import get_user_project
from hostfix.store import records

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/status")
async def billing_status(user: dict = Depends(get_current_user)):
    subscriptions = records.list_by("subscriptions", user_id=user["id"])
    active = next((s for s in subscriptions if s["status"] == SubscriptionStatus.ACTIVE), None)
    return {
        "has_active_subscription": active is not None,
        "subscription": active,
        "fix_count": user["fix_count"],
        "current_fix_price": get_fix_price(user["fix_count"]),
        "promotional_fixes_remaining": max(0, PROMOTIONAL_FIX_LIMIT - user["fix_count"]),
    }


@router.get("/invoices")
async def list_invoices(user: dict = Depends(get_current_user)):
    return records.list_by("invoices", user_id=user["id"], limit=50)


@router.get("/fix-price", response_model=FixPriceResponse)
async def fix_price(user: dict = Depends(get_current_user)):
    price = get_fix_price(user["fix_count"])
    return FixPriceResponse(
        price_in_cents=price,
        price_formatted=format_price(price),
        fix_count=user["fix_count"],
        is_promotional_rate=is_promotional(user["fix_count"]),
    )


@router.post("/create-checkout")
def create_checkout(request: CreateCheckoutRequest, user: dict = Depends(get_current_user)):
    try:
        get_user_project(request.project_id, user["id"])
        customer_id = ensure_customer(user["id"])
        session = get_payment_client().create_hosting_checkout(customer_id, request.project_id)
    except HostfixError as e:
        raise http_error(e) from e
    return {"session_id": session.id, "url": session.url}

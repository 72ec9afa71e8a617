"""Billing schemas: invoices, subscriptions and typed payment events."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class InvoiceType(str, Enum):
    SUBSCRIPTION = "subscription"
    FIX = "fix"
    MIGRATION = "migration"


class InvoiceStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    """Stripe subscription states, as a closed set."""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class PaymentSucceededEvent(BaseModel):
    """A completed fix charge, as delivered by the payment webhook.

    The fix id is required; events without one are not fix payments.
    """

    fix_request_id: str
    payment_intent_id: str
    amount: int = Field(ge=0, description="Charged amount in cents")

    @classmethod
    def from_payment_intent(cls, payment_intent: Any) -> Optional["PaymentSucceededEvent"]:
        """Build from a Stripe PaymentIntent object (or dict). None if not a fix payment."""
        metadata = get_field(payment_intent, "metadata") or {}
        if get_field(metadata, "type") != "fix" or not get_field(metadata, "fix_request_id"):
            return None
        return cls(
            fix_request_id=get_field(metadata, "fix_request_id"),
            payment_intent_id=get_field(payment_intent, "id"),
            amount=get_field(payment_intent, "amount") or 0,
        )


def get_field(obj: Any, key: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    try:
        return obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, None)


class CreateCheckoutRequest(BaseModel):
    project_id: str


class FixPriceResponse(BaseModel):
    price_in_cents: int
    price_formatted: str
    fix_count: int
    is_promotional_rate: bool

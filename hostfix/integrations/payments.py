"""Stripe payment client.

Customers, fix charges (PaymentIntents), the hosting subscription
checkout, and webhook signature verification. Payment completion is not
observed here; it arrives later as a webhook (see hostfix.billing.events).

Requires environment variables:
    STRIPE_SECRET_KEY
    STRIPE_WEBHOOK_SECRET
    STRIPE_PRICE_HOSTING_MONTHLY: price id of the hosting plan
    APP_URL: dashboard base URL for checkout redirects
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import stripe

from hostfix.errors import CapabilityError, PaymentError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class Charge:
    id: str
    client_secret: Optional[str]
    amount: int


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str]


class PaymentClient:
    """Payment capability backed by the Stripe SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        hosting_price_id: Optional[str] = None,
        app_url: str = "http://localhost:5173",
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.hosting_price_id = hosting_price_id
        self.app_url = app_url.rstrip("/")
        if not api_key:
            logger.warning("STRIPE_SECRET_KEY not set — payment calls will fail")

    def _require_key(self) -> str:
        if not self.api_key:
            raise CapabilityError("Stripe is not configured (STRIPE_SECRET_KEY missing)")
        return self.api_key

    def create_customer(self, user_id: str, email: str, name: Optional[str] = None) -> str:
        api_key = self._require_key()
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name or None,
                metadata={"hostfix_user_id": user_id},
                idempotency_key=f"customer-{user_id}",
                api_key=api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {user_id}: {e}")
            raise PaymentError(f"Could not create payment customer: {e.user_message or e}") from e
        logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    def create_fix_charge(
        self,
        customer_id: str,
        fix_request_id: str,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> Charge:
        """Create a PaymentIntent for one fix. The webhook matches it back via metadata."""
        api_key = self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                customer=customer_id,
                amount=amount,
                currency="usd",
                automatic_payment_methods={"enabled": True},
                metadata={"type": "fix", "fix_request_id": fix_request_id},
                idempotency_key=idempotency_key,
                api_key=api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe charge creation failed for fix {fix_request_id}: {e}")
            raise PaymentError(f"Could not create charge: {e.user_message or e}") from e
        logger.info(f"Created PaymentIntent {intent.id} for fix {fix_request_id} ({amount} cents)")
        return Charge(id=intent.id, client_secret=intent.client_secret, amount=amount)

    def create_hosting_checkout(self, customer_id: str, project_id: str) -> CheckoutSession:
        api_key = self._require_key()
        if not self.hosting_price_id:
            raise CapabilityError("STRIPE_PRICE_HOSTING_MONTHLY is not configured")
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": self.hosting_price_id, "quantity": 1}],
                success_url=(
                    f"{self.app_url}/get-started?step=6&project_id={project_id}"
                    "&session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self.app_url}/get-started?step=5&cancelled=true",
                metadata={"type": "hosting", "project_id": project_id},
                api_key=api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout creation failed for project {project_id}: {e}")
            raise PaymentError(f"Could not create checkout session: {e.user_message or e}") from e
        return CheckoutSession(id=session.id, url=session.url)

    def get_subscription(self, subscription_id: str):
        api_key = self._require_key()
        try:
            return stripe.Subscription.retrieve(subscription_id, api_key=api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription lookup failed for {subscription_id}: {e}")
            raise PaymentError(f"Could not read subscription {subscription_id}: {e}") from e

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Verify a webhook signature and return the event.

        `payload` must be the raw request body; re-serialized JSON will not verify.
        """
        if not self.webhook_secret:
            raise CapabilityError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise ValidationError("Missing stripe-signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise ValidationError("Invalid webhook signature") from e


_payments: Optional[PaymentClient] = None


def get_payment_client() -> PaymentClient:
    """Get or create the global PaymentClient instance."""
    global _payments
    if _payments is None:
        _payments = PaymentClient(
            api_key=os.environ.get("STRIPE_SECRET_KEY"),
            webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET"),
            hosting_price_id=os.environ.get("STRIPE_PRICE_HOSTING_MONTHLY"),
            app_url=os.environ.get("APP_URL", "http://localhost:5173"),
        )
    return _payments

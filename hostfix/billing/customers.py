"""Payment-customer handles for users."""

import logging

from hostfix.errors import NotFoundError
from hostfix.integrations.payments import get_payment_client
from hostfix.store import records

logger = logging.getLogger(__name__)


def ensure_customer(user_id: str) -> str:
    """Return the user's Stripe customer id, creating and storing one if needed."""
    user = records.get("users", user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}")
    if user.get("stripe_customer_id"):
        return user["stripe_customer_id"]

    customer_id = get_payment_client().create_customer(
        user_id, user["email"], user.get("full_name"),
    )
    # Another request may have stored one in the meantime; keep the first.
    stored = records.update_if("users", user_id, {"stripe_customer_id": customer_id}, stripe_customer_id=None)
    if stored is None:
        return records.get("users", user_id)["stripe_customer_id"]
    logger.info(f"Linked Stripe customer {customer_id} to user {user_id}")
    return customer_id

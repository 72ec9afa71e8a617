"""Payment webhook events.

Each handler is idempotent: Stripe delivers at-least-once, so a replayed
event must leave the records exactly as the first delivery did. Fix
payments are handled as a typed PaymentSucceededEvent; the subscription
events keep the hosting plan's Subscription/Invoice rows in sync.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from hostfix.billing.schemas import (
    InvoiceStatus,
    InvoiceType,
    PaymentSucceededEvent,
    SubscriptionStatus,
    get_field,
)
from hostfix.fixes.schemas import FixStatus
from hostfix.integrations.payments import get_payment_client
from hostfix.projects.schemas import ProjectStatus
from hostfix.store import records

logger = logging.getLogger(__name__)


def _timestamp(value: Any) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None).isoformat()


def _ref_id(value: Any) -> Optional[str]:
    """Stripe expandable fields are either an id string or an object with an id."""
    if value is None or isinstance(value, str):
        return value
    return get_field(value, "id")


def _subscription_status(value: Any) -> str:
    try:
        return SubscriptionStatus(value).value
    except ValueError:
        logger.warning(f"Unknown subscription status {value!r}, recording as incomplete")
        return SubscriptionStatus.INCOMPLETE.value


def _period(subscription: Any) -> dict:
    start = get_field(subscription, "current_period_start")
    end = get_field(subscription, "current_period_end")
    if start is None:
        # Newer API versions carry the period on the subscription items.
        items = get_field(get_field(subscription, "items"), "data") or []
        if items:
            start = get_field(items[0], "current_period_start")
            end = get_field(items[0], "current_period_end")
    return {"current_period_start": _timestamp(start), "current_period_end": _timestamp(end)}


def _user_by_customer(customer: Any) -> Optional[dict]:
    customer_id = _ref_id(customer)
    if not customer_id:
        return None
    users = records.list_by("users", stripe_customer_id=customer_id, limit=1)
    if not users:
        logger.error(f"No user found for Stripe customer {customer_id}")
        return None
    return users[0]


def _subscription_row(subscription_id: Optional[str]) -> Optional[dict]:
    if not subscription_id:
        return None
    rows = records.list_by("subscriptions", stripe_subscription_id=subscription_id, limit=1)
    return rows[0] if rows else None


# --- Fix payments ---


def handle_fix_payment(event: PaymentSucceededEvent) -> bool:
    """Record a completed fix payment and start generation.

    Each effect is guarded on its own (paid_at, the invoice row, an open
    generate run), so a redelivery after a partial failure finishes the
    work instead of skipping it. Returns False when the payment was
    already recorded.
    """
    from hostfix.dispatch import dispatch_step
    from hostfix.store.step_runs import StepKind, StepRunStatus

    fix = records.get("fix_requests", event.fix_request_id)
    if fix is None:
        logger.error(f"Payment {event.payment_intent_id} references unknown fix {event.fix_request_id}")
        return False

    paid = records.update_if(
        "fix_requests",
        fix["id"],
        {"paid_at": records.now_iso(), "stripe_payment_intent_id": event.payment_intent_id},
        paid_at=None,
    )
    if paid is None:
        logger.info(f"Payment {event.payment_intent_id} for fix {fix['id']} already recorded")

    invoice = records.insert("invoices", {
        "user_id": fix["user_id"],
        "project_id": fix["project_id"],
        "fix_request_id": fix["id"],
        "stripe_payment_intent_id": event.payment_intent_id,
        "type": InvoiceType.FIX,
        "description": f"Fix: {fix['description'][:100]}",
        "amount_in_cents": event.amount,
        "status": InvoiceStatus.PAID,
    }, ignore_conflicts=True)
    if invoice is not None:
        # The invoice row is the once-per-payment marker for the fix count
        records.increment("users", fix["user_id"], "fix_count")

    current = records.get("fix_requests", fix["id"])
    if current["status"] != FixStatus.AWAITING_PAYMENT:
        return paid is not None
    open_runs = records.list_by(
        "step_runs", entity_id=fix["id"], kind=StepKind.GENERATE,
        status=[StepRunStatus.PENDING, StepRunStatus.RUNNING],
    )
    if open_runs:
        logger.info(f"Generation for fix {fix['id']} already dispatched ({open_runs[0]['id']})")
        return paid is not None

    logger.info(f"Fix {fix['id']} paid ({event.amount} cents), starting generation")
    dispatch_step(StepKind.GENERATE, fix["id"])
    return paid is not None


def on_payment_intent_succeeded(obj: Any) -> None:
    event = PaymentSucceededEvent.from_payment_intent(obj)
    if event is None:
        logger.info(f"PaymentIntent {get_field(obj, 'id')} is not a fix payment, ignoring")
        return
    handle_fix_payment(event)


# --- Hosting subscription ---


def on_checkout_completed(session: Any) -> None:
    metadata = get_field(session, "metadata") or {}
    subscription_id = _ref_id(get_field(session, "subscription"))
    if get_field(metadata, "type") != "hosting" or not subscription_id:
        return

    user = _user_by_customer(get_field(session, "customer"))
    if user is None:
        return

    project_id = get_field(metadata, "project_id")
    subscription = get_payment_client().get_subscription(subscription_id)
    row = records.insert("subscriptions", {
        "user_id": user["id"],
        "project_id": project_id,
        "stripe_subscription_id": subscription_id,
        "status": _subscription_status(get_field(subscription, "status")),
        **_period(subscription),
    }, ignore_conflicts=True)
    if row is None:
        return
    logger.info(f"Hosting subscription {subscription_id} recorded for project {project_id}")

    project = records.get("projects", project_id) if project_id else None
    if project and project["status"] == ProjectStatus.ONBOARDING and project.get("github_repo_url"):
        from hostfix.dispatch import dispatch_step
        from hostfix.store.step_runs import StepKind

        dispatch_step(StepKind.MIGRATE, project_id)


def on_invoice_paid(invoice: Any) -> None:
    user = _user_by_customer(get_field(invoice, "customer"))
    if user is None:
        return
    subscription = _subscription_row(_ref_id(get_field(invoice, "subscription")))
    records.insert("invoices", {
        "user_id": user["id"],
        "project_id": subscription["project_id"] if subscription else None,
        "stripe_invoice_id": get_field(invoice, "id"),
        "type": InvoiceType.SUBSCRIPTION,
        "description": get_field(invoice, "description") or "Monthly hosting",
        "amount_in_cents": get_field(invoice, "amount_paid") or 0,
        "status": InvoiceStatus.PAID,
    }, ignore_conflicts=True)


def on_invoice_payment_failed(invoice: Any) -> None:
    row = _subscription_row(_ref_id(get_field(invoice, "subscription")))
    if row is None:
        return
    records.update("subscriptions", row["id"], {"status": SubscriptionStatus.PAST_DUE})
    logger.warning(f"Subscription {row['stripe_subscription_id']} is past due")


def on_subscription_updated(subscription: Any) -> None:
    row = _subscription_row(get_field(subscription, "id"))
    if row is None:
        return
    records.update("subscriptions", row["id"], {
        "status": _subscription_status(get_field(subscription, "status")),
        **_period(subscription),
    })


def on_subscription_deleted(subscription: Any) -> None:
    row = _subscription_row(get_field(subscription, "id"))
    if row is None:
        return
    records.update("subscriptions", row["id"], {"status": SubscriptionStatus.CANCELED})
    if row.get("project_id"):
        suspended = records.update_if(
            "projects", row["project_id"], {"status": ProjectStatus.SUSPENDED},
            status=[ProjectStatus.ACTIVE, ProjectStatus.ONBOARDING, ProjectStatus.MIGRATING],
        )
        if suspended:
            logger.warning(f"Project {row['project_id']} suspended (subscription canceled)")


EVENT_HANDLERS: dict[str, Callable[[Any], None]] = {
    "payment_intent.succeeded": on_payment_intent_succeeded,
    "checkout.session.completed": on_checkout_completed,
    "invoice.paid": on_invoice_paid,
    "invoice.payment_failed": on_invoice_payment_failed,
    "customer.subscription.updated": on_subscription_updated,
    "customer.subscription.deleted": on_subscription_deleted,
}


def handle_event(event: Any) -> bool:
    """Route a verified Stripe event to its handler. False if the type is not handled."""
    event_type = get_field(event, "type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled Stripe event type: {event_type}")
        return False
    logger.info(f"Stripe webhook: {event_type} ({get_field(event, 'id')})")
    handler(get_field(get_field(event, "data"), "object"))
    return True

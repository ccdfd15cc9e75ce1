"""Subscription State Synchronizer: mirror a Stripe subscription into ``subscriptions``."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select

from payledger.extensions import db
from payledger.models import Subscription
from payledger.observability import log_event
from payledger.services import stripe_gateway
from payledger.utils.helpers import dialect_insert, to_dt

from .errors import BillingError, PlanResolutionFailed, UserResolutionFailed
from .resolvers import PLAN_RESOLVERS, USER_RESOLVERS, ResolutionContext, resolve_first

logger = logging.getLogger(__name__)

_MUTABLE_COLUMNS = (
    "user_id",
    "plan_id",
    "stripe_customer_id",
    "price_id",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "canceled_at",
    "ended_at",
    "trial_start",
    "trial_end",
    "metadata",
)


def first_item(sub_obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (sub_obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def first_price(sub_obj: Dict[str, Any]) -> Dict[str, Any]:
    return first_item(sub_obj).get("price") or {}


def context_for(sub_obj: Dict[str, Any], customer_id: Optional[str], initial_metadata: Optional[Dict[str, Any]] = None) -> ResolutionContext:
    customer = sub_obj.get("customer")
    if isinstance(customer, str):
        customer_id = customer_id or customer
        customer = None
    elif isinstance(customer, dict):
        customer_id = customer_id or customer.get("id")
    return ResolutionContext(
        subscription_metadata=dict(sub_obj.get("metadata") or {}),
        initial_metadata=dict(initial_metadata or {}),
        customer=customer,
        customer_id=customer_id,
        price_id=first_price(sub_obj).get("id"),
    )


def resolve_user_id(ctx: ResolutionContext) -> Optional[int]:
    return resolve_first(USER_RESOLVERS, ctx)


def resolve_plan_id(ctx: ResolutionContext) -> Optional[int]:
    return resolve_first(PLAN_RESOLVERS, ctx)


def sync_subscription(subscription_id: str, customer_id: str, initial_metadata: Optional[Dict[str, Any]] = None) -> Subscription:
    """Fetch the subscription from Stripe and upsert the local mirror row.

    Raises ``UserResolutionFailed``/``PlanResolutionFailed`` without writing
    anything when the owning user or plan cannot be determined.
    """
    sub_obj = stripe_gateway.retrieve_subscription(subscription_id)
    item = first_item(sub_obj)
    price = item.get("price") or {}
    if not item or not price.get("id"):
        raise BillingError(f"Subscription {subscription_id} has no items or price")

    ctx = context_for(sub_obj, customer_id, initial_metadata)

    user_id = resolve_user_id(ctx)
    if user_id is None:
        log_event("subscription_sync_failed", logging.ERROR, subscription_id=subscription_id, reason="user_unresolved")
        raise UserResolutionFailed(f"Cannot determine user for subscription {subscription_id}")

    plan_id = resolve_plan_id(ctx)
    if plan_id is None:
        log_event("subscription_sync_failed", logging.ERROR, subscription_id=subscription_id, reason="plan_unresolved")
        raise PlanResolutionFailed(f"Cannot determine plan for subscription {subscription_id}")

    metadata = dict(sub_obj.get("metadata") or {})
    if initial_metadata:
        metadata["checkoutSessionMetadata"] = dict(initial_metadata)

    values = {
        "stripe_subscription_id": sub_obj.get("id") or subscription_id,
        "user_id": user_id,
        "plan_id": plan_id,
        "stripe_customer_id": ctx.customer_id or customer_id,
        "price_id": price["id"],
        "status": sub_obj.get("status") or "incomplete",
        "current_period_start": to_dt(item.get("current_period_start") or sub_obj.get("current_period_start")),
        "current_period_end": to_dt(item.get("current_period_end") or sub_obj.get("current_period_end")),
        "cancel_at_period_end": bool(sub_obj.get("cancel_at_period_end")),
        "canceled_at": to_dt(sub_obj.get("canceled_at")),
        "ended_at": to_dt(sub_obj.get("ended_at")),
        "trial_start": to_dt(sub_obj.get("trial_start")),
        "trial_end": to_dt(sub_obj.get("trial_end")),
        "metadata": metadata,
    }

    table = Subscription.__table__
    stmt = dialect_insert(table).values(**values)
    update = {name: stmt.excluded[name] for name in _MUTABLE_COLUMNS}
    update["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(index_elements=[table.c.stripe_subscription_id], set_=update)

    try:
        db.session.execute(stmt)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log_event(
        "subscription_synced",
        subscription_id=values["stripe_subscription_id"],
        user_id=user_id,
        plan_id=plan_id,
        status=values["status"],
    )
    return db.session.execute(
        select(Subscription)
        .where(Subscription.stripe_subscription_id == values["stripe_subscription_id"])
        .execution_options(populate_existing=True)
    ).scalar_one()

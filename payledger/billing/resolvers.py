"""Ordered fallback chains for deriving local user and plan ids."""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy import select

from payledger.extensions import db
from payledger.models import User
from payledger.utils.helpers import safe_int

from .plans import find_plan_id_by_price


@dataclass(frozen=True)
class ResolutionContext:
    subscription_metadata: Dict[str, Any] = field(default_factory=dict)
    initial_metadata: Dict[str, Any] = field(default_factory=dict)
    customer: Optional[Dict[str, Any]] = None
    customer_id: Optional[str] = None
    price_id: Optional[str] = None


Resolver = Callable[[ResolutionContext], Optional[int]]


def resolve_first(resolvers: Iterable[Resolver], ctx: ResolutionContext) -> Optional[int]:
    for resolver in resolvers:
        value = resolver(ctx)
        if value is not None:
            return value
    return None


def user_from_subscription_metadata(ctx: ResolutionContext) -> Optional[int]:
    return safe_int(ctx.subscription_metadata.get("userId"))


def user_from_initial_metadata(ctx: ResolutionContext) -> Optional[int]:
    return safe_int(ctx.initial_metadata.get("userId"))


def user_from_customer_metadata(ctx: ResolutionContext) -> Optional[int]:
    customer = ctx.customer
    if not isinstance(customer, dict) or customer.get("deleted"):
        return None
    return safe_int((customer.get("metadata") or {}).get("userId"))


def user_from_directory(ctx: ResolutionContext) -> Optional[int]:
    if not ctx.customer_id:
        return None
    return db.session.execute(
        select(User.id).where(User.stripe_customer_id == ctx.customer_id)
    ).scalar_one_or_none()


def plan_from_subscription_metadata(ctx: ResolutionContext) -> Optional[int]:
    return safe_int(ctx.subscription_metadata.get("planId"))


def plan_from_initial_metadata(ctx: ResolutionContext) -> Optional[int]:
    return safe_int(ctx.initial_metadata.get("planId"))


def plan_from_price(ctx: ResolutionContext) -> Optional[int]:
    return find_plan_id_by_price(ctx.price_id)


USER_RESOLVERS = (
    user_from_subscription_metadata,
    user_from_initial_metadata,
    user_from_customer_metadata,
    user_from_directory,
)

PLAN_RESOLVERS = (
    plan_from_subscription_metadata,
    plan_from_initial_metadata,
    plan_from_price,
)

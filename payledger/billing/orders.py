"""Order ledger writer. The (provider, provider_order_id) key is the idempotency guard."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, NamedTuple, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from payledger.extensions import db
from payledger.models import Order
from payledger.models.order import ORDER_REFUND, PURCHASE_ORDER_TYPES

logger = logging.getLogger(__name__)

PROVIDER_STRIPE = "stripe"

# Currencies Stripe already expresses in whole units
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}

_CENT = Decimal("0.01")


class OrderRecord(NamedTuple):
    order: Order
    created: bool


def minor_to_decimal(value: Any, currency: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    amount = Decimal(str(value))
    if (currency or "").lower() not in ZERO_DECIMAL_CURRENCIES:
        amount = amount / Decimal(100)
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def find_order(provider: str, provider_order_id: str) -> Optional[Order]:
    return db.session.execute(
        select(Order).where(Order.provider == provider, Order.provider_order_id == provider_order_id)
    ).scalar_one_or_none()


def record_order(**fields) -> OrderRecord:
    """Insert the order unless its key already exists.

    A concurrent insert losing the unique-constraint race is reported as
    ``created=False``; only the creator goes on to touch the credit ledger.
    """
    provider = fields.setdefault("provider", PROVIDER_STRIPE)
    provider_order_id = fields["provider_order_id"]

    existing = find_order(provider, provider_order_id)
    if existing is not None:
        logger.info("Order %s:%s already recorded (id=%s)", provider, provider_order_id, existing.id)
        return OrderRecord(existing, False)

    order = Order(**fields)
    db.session.add(order)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = find_order(provider, provider_order_id)
        if existing is None:
            raise
        logger.info("Order %s:%s recorded concurrently (id=%s)", provider, provider_order_id, existing.id)
        return OrderRecord(existing, False)
    return OrderRecord(order, True)


def find_original_order(payment_intent_id: str, provider: str = PROVIDER_STRIPE) -> Optional[Order]:
    """Purchase order paid by ``payment_intent_id``.

    One-time purchases are keyed by the payment intent itself; subscription
    invoices carry it in ``stripe_payment_intent_id``.
    """
    return db.session.execute(
        select(Order)
        .where(
            Order.provider == provider,
            Order.order_type.in_(PURCHASE_ORDER_TYPES),
            or_(
                Order.provider_order_id == payment_intent_id,
                Order.stripe_payment_intent_id == payment_intent_id,
            ),
        )
        .order_by(Order.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def refunded_total(charge_id: str, provider: str = PROVIDER_STRIPE) -> Decimal:
    """Sum (positive) of refund orders already recorded for a charge."""
    total = db.session.execute(
        select(func.coalesce(func.sum(Order.amount_total), 0)).where(
            Order.provider == provider,
            Order.order_type == ORDER_REFUND,
            Order.stripe_charge_id == charge_id,
        )
    ).scalar_one()
    return -Decimal(str(total or 0))

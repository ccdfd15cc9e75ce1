import logging
from decimal import Decimal

from payledger.extensions import db
from payledger.models import Order
from payledger.models.credit_log import LOG_REFUND_REVOKE
from payledger.models.order import ORDER_REFUND
from payledger.models.usage import BUCKET_ONE_TIME
from payledger.observability import log_event
from payledger.services import stripe_gateway

from .. import ledger
from ..events import ChargeRefunded
from ..orders import PROVIDER_STRIPE, find_order, find_original_order, minor_to_decimal, record_order, refunded_total
from ..plans import get_plan_benefits
from ..resolvers import ResolutionContext, resolve_first, user_from_customer_metadata, user_from_directory
from ..router import DispatchOutcome, handles
from .common import default_currency

logger = logging.getLogger(__name__)


def _refund_user_id(event: ChargeRefunded, original):
    if original is not None:
        return original.user_id
    if not event.customer_id:
        return None
    customer = stripe_gateway.retrieve_customer(event.customer_id)
    ctx = ResolutionContext(customer=customer, customer_id=event.customer_id)
    return resolve_first((user_from_customer_metadata, user_from_directory), ctx)


def is_full_refund(amount_refunded: int, original) -> bool:
    total = Decimal(str(original.amount_total)).quantize(Decimal("0.01"))
    return minor_to_decimal(amount_refunded, original.currency) == total


def revoke_for_refund(original, refund_order_id: int, charge_id: str):
    notes = f"Full refund of order {original.id} (charge {charge_id})"
    if original.is_subscription_order:
        return ledger.revoke_current_allocation(
            original.user_id, log_type=LOG_REFUND_REVOKE, order_id=refund_order_id, notes=notes,
        )
    benefits = get_plan_benefits(original.plan_id)
    credits = benefits.one_time_credits if benefits else 0
    if credits <= 0:
        logger.info("Order %s granted no one-time credits; nothing to revoke", original.id)
        return None
    return ledger.revoke(
        original.user_id, credits, bucket=BUCKET_ONE_TIME, log_type=LOG_REFUND_REVOKE,
        order_id=refund_order_id, notes=notes,
    )


def _apply_revocation(refund_order, original, charge_id: str):
    """Revoke for a full refund, then clear the pending flag on the refund order."""
    try:
        revoke_for_refund(original, refund_order.id, charge_id)
    except Exception as exc:
        log_event("refund_revoke_failed", logging.ERROR, refund_order_id=refund_order.id,
                  original_order_id=original.id, charge_id=charge_id, error=str(exc))
        raise
    refund_order.meta = {**(refund_order.meta or {}), "revocationPending": False}
    db.session.commit()


def _resume_revocation(refund_order, charge_id: str):
    """A redelivery finishes a revocation an earlier delivery failed to apply."""
    meta = refund_order.meta or {}
    if not meta.get("revocationPending"):
        return
    original = db.session.get(Order, meta.get("originalOrderId")) if meta.get("originalOrderId") else None
    if original is None:
        return
    logger.warning("Resuming credit revocation for refund order %s (charge %s)", refund_order.id, charge_id)
    _apply_revocation(refund_order, original, charge_id)


@handles(ChargeRefunded)
def handle_charge_refunded(event: ChargeRefunded):
    """Record each cumulative refund state once; revoke credits only on a full refund."""
    if not event.charge_id or event.amount_refunded <= 0:
        logger.info("Charge %s carries no refunded amount; skipping", event.charge_id)
        return DispatchOutcome.IGNORED

    refund_key = f"{event.charge_id}:{event.amount_refunded}"
    existing = find_order(PROVIDER_STRIPE, refund_key)
    if existing is not None:
        log_event("order_duplicate", order_id=existing.id, provider_order_id=refund_key, event_id=event.event_id)
        _resume_revocation(existing, event.charge_id)
        return DispatchOutcome.HANDLED

    original = find_original_order(event.payment_intent_id) if event.payment_intent_id else None

    user_id = _refund_user_id(event, original)
    if user_id is None:
        # Only reachable without an original order; no later delivery can resolve it
        log_event("refund_user_unresolved", logging.WARNING, charge_id=event.charge_id,
                  payment_intent_id=event.payment_intent_id)
        return DispatchOutcome.IGNORED

    full = original is not None and is_full_refund(event.amount_refunded, original)
    currency = default_currency(event.currency)
    cumulative = minor_to_decimal(event.amount_refunded, currency)
    increment = max(cumulative - refunded_total(event.charge_id), Decimal("0.00"))

    order, created = record_order(
        provider_order_id=refund_key,
        user_id=user_id,
        order_type=ORDER_REFUND,
        status="succeeded",
        stripe_payment_intent_id=event.payment_intent_id,
        stripe_charge_id=event.charge_id,
        subscription_id=original.subscription_id if original else None,
        plan_id=original.plan_id if original else None,
        amount_total=-increment,
        currency=currency,
        meta={
            "stripeChargeId": event.charge_id,
            "stripePaymentIntentId": event.payment_intent_id,
            "originalOrderId": original.id if original else None,
            "amountRefunded": event.amount_refunded,
            "refundReason": event.refund_reason,
            **event.metadata,
            "revocationPending": full,
        },
    )
    if not created:
        _resume_revocation(order, event.charge_id)
        return DispatchOutcome.HANDLED

    if original is None:
        logger.warning("No original order for payment intent %s (charge %s); refund recorded without revocation",
                       event.payment_intent_id, event.charge_id)
        return DispatchOutcome.HANDLED

    if not full:
        logger.info("Refund on charge %s is partial (%s of %s); credits kept",
                    event.charge_id, cumulative, original.amount_total)
        return DispatchOutcome.HANDLED

    _apply_revocation(order, original, event.charge_id)
    return DispatchOutcome.HANDLED

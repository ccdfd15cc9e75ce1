import logging

from payledger.models.credit_log import LOG_PURCHASE
from payledger.models.order import ORDER_ONE_TIME_PURCHASE
from payledger.models.usage import BUCKET_ONE_TIME
from payledger.observability import log_event
from payledger.utils.helpers import safe_int

from .. import ledger
from ..errors import BenefitsNotFound
from ..events import CheckoutSessionCompleted
from ..orders import minor_to_decimal, record_order
from ..plans import get_plan_benefits
from ..router import DispatchOutcome, handles
from .common import default_currency, grant_or_alert

logger = logging.getLogger(__name__)


@handles(CheckoutSessionCompleted)
def handle_checkout_completed(event: CheckoutSessionCompleted):
    """One-time purchase: record the order, then grant the plan's one-time credits once."""
    if event.mode != "payment":
        # Subscription checkouts are settled by invoice.paid
        return DispatchOutcome.IGNORED

    meta = event.metadata
    user_id = safe_int(meta.get("userId"))
    plan_id = safe_int(meta.get("planId"))
    price_id = meta.get("priceId")
    if user_id is None or plan_id is None or not price_id:
        log_event("checkout_metadata_missing", logging.ERROR, session_id=event.session_id,
                  metadata_keys=sorted(meta.keys()))
        return DispatchOutcome.IGNORED

    order_key = event.payment_intent_id
    if not order_key:
        logger.error("Checkout session %s completed without a payment intent; keying order by session id", event.session_id)
        order_key = event.session_id

    currency = default_currency(event.currency)
    order, created = record_order(
        provider_order_id=order_key,
        user_id=user_id,
        order_type=ORDER_ONE_TIME_PURCHASE,
        status="succeeded",
        stripe_payment_intent_id=event.payment_intent_id,
        plan_id=plan_id,
        price_id=price_id,
        product_id=meta.get("productId"),
        amount_subtotal=minor_to_decimal(event.amount_subtotal, currency),
        amount_discount=minor_to_decimal(event.amount_discount, currency),
        amount_tax=minor_to_decimal(event.amount_tax, currency),
        amount_total=minor_to_decimal(event.amount_total or 0, currency),
        currency=currency,
        meta={"stripeCheckoutSessionId": event.session_id, **meta},
    )
    if not created:
        log_event("order_duplicate", order_id=order.id, provider_order_id=order_key, event_id=event.event_id)
        return DispatchOutcome.HANDLED

    def _grant():
        benefits = get_plan_benefits(plan_id)
        if benefits is None:
            raise BenefitsNotFound(f"Plan {plan_id} not found for order {order.id}")
        if benefits.one_time_credits <= 0:
            logger.info("Plan %s grants no one-time credits; nothing to do for order %s", plan_id, order.id)
            return None
        return ledger.grant(
            user_id,
            benefits.one_time_credits,
            bucket=BUCKET_ONE_TIME,
            order_id=order.id,
            log_type=LOG_PURCHASE,
            notes=f"One-time purchase of plan {plan_id}",
        )

    grant_or_alert(_grant, user_id=user_id, order_id=order.id, plan_id=plan_id)
    return DispatchOutcome.HANDLED

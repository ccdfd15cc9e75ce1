import logging
from datetime import date

from payledger.models.order import ORDER_SUBSCRIPTION_INITIAL, ORDER_SUBSCRIPTION_RENEWAL
from payledger.observability import log_event
from payledger.services import notifications, stripe_gateway
from payledger.utils.helpers import to_dt, utcnow

from .. import ledger
from ..allocation import MonthlyAllocation, YearlyAllocation
from ..errors import BenefitsNotFound, UserResolutionFailed
from ..events import InvoicePaid, InvoicePaymentFailed
from ..orders import PROVIDER_STRIPE, find_order, minor_to_decimal, record_order
from ..plans import get_plan_benefits
from ..router import DispatchOutcome, handles
from ..sync import context_for, first_item, first_price, resolve_plan_id, resolve_user_id, sync_subscription
from .common import default_currency, grant_or_alert

logger = logging.getLogger(__name__)


def _paid_period_start(sub_obj) -> date:
    """Start of the period this invoice paid for; renewals begin a new schedule year."""
    start = (
        to_dt(first_item(sub_obj).get("current_period_start"))
        or to_dt(sub_obj.get("current_period_start"))
        or to_dt(sub_obj.get("start_date"))
        or to_dt(sub_obj.get("created"))
        or utcnow()
    )
    return start.date()


def grant_subscription_credits(user_id: int, plan_id: int, order_id: int, sub_obj: dict):
    """Reset the subscription bucket for a newly paid subscription invoice."""
    benefits = get_plan_benefits(plan_id)
    if benefits is None:
        raise BenefitsNotFound(f"Could not fetch plan benefits for {plan_id}")

    if benefits.is_monthly and benefits.monthly_credits > 0:
        return ledger.set_subscription_balance(
            user_id,
            benefits.monthly_credits,
            order_id=order_id,
            allocation=MonthlyAllocation(monthly_credits=benefits.monthly_credits),
            notes="Subscription credits granted/reset",
        )

    if benefits.is_yearly and benefits.total_months > 0 and benefits.monthly_credits > 0:
        allocation = YearlyAllocation.seed(
            monthly_credits=benefits.monthly_credits,
            total_months=benefits.total_months,
            start=_paid_period_start(sub_obj),
        )
        return ledger.set_subscription_balance(
            user_id,
            benefits.monthly_credits,
            order_id=order_id,
            allocation=allocation,
            notes="Yearly plan initial credits granted",
        )

    logger.info("Plan %s defines no subscription credits; order %s gets none", plan_id, order_id)
    return None


@handles(InvoicePaid)
def handle_invoice_paid(event: InvoicePaid):
    if not event.is_paid_subscription_invoice:
        logger.info(
            "Invoice %s is not a paid subscription invoice (status=%s reason=%s); skipping",
            event.invoice_id, event.status, event.billing_reason,
        )
        return DispatchOutcome.IGNORED

    existing = find_order(PROVIDER_STRIPE, event.invoice_id)
    if existing is not None:
        log_event("order_duplicate", order_id=existing.id, provider_order_id=event.invoice_id, event_id=event.event_id)
    else:
        sub_obj = stripe_gateway.retrieve_subscription(event.subscription_id)
        ctx = context_for(sub_obj, event.customer_id)
        user_id = resolve_user_id(ctx)
        if user_id is None:
            log_event("invoice_user_unresolved", logging.ERROR, invoice_id=event.invoice_id,
                      subscription_id=event.subscription_id)
            raise UserResolutionFailed(f"User ID determination failed for invoice {event.invoice_id}")
        plan_id = resolve_plan_id(ctx)
        if plan_id is None:
            logger.warning("No plan for subscription %s (invoice %s); recording order without credits",
                           event.subscription_id, event.invoice_id)

        price = first_price(sub_obj)
        product = price.get("product")
        currency = default_currency(event.currency)
        payment_intent = stripe_gateway.retrieve_invoice_payment_intent(event.invoice_id)
        order_type = (
            ORDER_SUBSCRIPTION_INITIAL if event.billing_reason == "subscription_create" else ORDER_SUBSCRIPTION_RENEWAL
        )
        order, created = record_order(
            provider_order_id=event.invoice_id,
            user_id=user_id,
            order_type=order_type,
            status="succeeded",
            stripe_payment_intent_id=payment_intent,
            stripe_invoice_id=event.invoice_id,
            subscription_id=event.subscription_id,
            plan_id=plan_id,
            price_id=price.get("id"),
            product_id=product.get("id") if isinstance(product, dict) else product,
            amount_subtotal=minor_to_decimal(event.amount_subtotal, currency),
            amount_discount=minor_to_decimal(event.amount_discount, currency),
            amount_tax=minor_to_decimal(event.amount_tax, currency),
            amount_total=minor_to_decimal(event.amount_paid, currency),
            currency=currency,
            meta={
                "stripeInvoiceId": event.invoice_id,
                "stripeSubscriptionId": event.subscription_id,
                "billingReason": event.billing_reason,
                **event.metadata,
            },
        )
        if created and plan_id is not None:
            order_id = order.id
            grant_or_alert(
                lambda: grant_subscription_credits(user_id, plan_id, order_id, sub_obj),
                user_id=user_id, order_id=order_id, plan_id=plan_id,
            )
        elif not created:
            log_event("order_duplicate", order_id=order.id, provider_order_id=event.invoice_id, event_id=event.event_id)

    try:
        sync_subscription(event.subscription_id, event.customer_id)
    except Exception:
        logger.exception("Post-invoice sync failed for subscription %s", event.subscription_id)
    return DispatchOutcome.HANDLED


@handles(InvoicePaymentFailed)
def handle_invoice_payment_failed(event: InvoicePaymentFailed):
    if not event.subscription_id or not event.customer_id:
        logger.warning("Invoice %s payment failed without subscription/customer; skipping", event.invoice_id)
        return DispatchOutcome.IGNORED

    subscription = sync_subscription(event.subscription_id, event.customer_id)

    try:
        notifications.send_invoice_payment_failed_email(
            user_id=subscription.user_id,
            invoice_id=event.invoice_id,
            subscription_id=event.subscription_id,
            amount=minor_to_decimal(event.amount_due, event.currency),
            currency=event.currency,
        )
    except Exception:
        logger.exception("Payment failure notice for invoice %s not sent", event.invoice_id)
    return DispatchOutcome.HANDLED

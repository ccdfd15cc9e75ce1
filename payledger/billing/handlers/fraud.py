import logging

from flask import current_app

from payledger.services import notifications, stripe_gateway

from ..events import EarlyFraudWarningCreated
from ..orders import minor_to_decimal
from ..resolvers import ResolutionContext, resolve_first, user_from_directory
from ..router import DispatchOutcome, handles

logger = logging.getLogger(__name__)

ACTION_EMAIL = "email"
ACTION_REFUND = "refund"


@handles(EarlyFraudWarningCreated)
def handle_early_fraud_warning(event: EarlyFraudWarningCreated):
    """Alert the operator; with the ``refund`` action also refund the charge.

    Credits are not touched here. A refund issued by Stripe arrives later as
    its own ``charge.refunded`` event.
    """
    if not event.charge_id:
        logger.error("Early fraud warning %s has no charge id", event.warning_id)
        return DispatchOutcome.IGNORED

    actions = set(current_app.config.get("FRAUD_WARNING_ACTIONS") or ())
    should_refund = ACTION_REFUND in actions
    should_email = ACTION_EMAIL in actions
    if not should_refund and not should_email:
        logger.warning("Fraud warning %s for charge %s: no automatic actions configured",
                       event.warning_id, event.charge_id)
        return DispatchOutcome.IGNORED

    charge = stripe_gateway.retrieve_charge(event.charge_id)
    customer_id = charge.get("customer")
    if isinstance(customer_id, dict):
        customer_id = customer_id.get("id")
    is_subscription_charge = "Subscription" in (charge.get("description") or "")
    currency = charge.get("currency")

    actions_taken = []
    refunded_now = False
    if should_refund:
        if charge.get("refunded"):
            logger.info("Charge %s already refunded", event.charge_id)
        else:
            stripe_gateway.create_fraud_refund(event.charge_id)
            refunded_now = True
            actions_taken.append("Automatic refund initiated")
            if is_subscription_charge and customer_id:
                if stripe_gateway.cancel_latest_subscription(customer_id):
                    actions_taken.append("Associated subscription cancelled")

    if should_email:
        actions_taken.append("Fraud warning email sent to administrators")
        notifications.notify_fraud_warning(
            warning_id=event.warning_id,
            charge_id=event.charge_id,
            customer_id=customer_id,
            amount=minor_to_decimal(charge.get("amount"), currency),
            currency=currency,
            fraud_type=event.fraud_type,
            description=charge.get("description"),
            actions_taken=actions_taken,
        )

    if refunded_now:
        user_id = resolve_first((user_from_directory,), ResolutionContext(customer_id=customer_id))
        notifications.send_fraud_refund_email(
            user_id=user_id,
            charge=charge,
            refund_amount=minor_to_decimal(charge.get("amount"), currency),
        )
    return DispatchOutcome.HANDLED

import logging

from payledger.models.credit_log import LOG_CANCEL_REVOKE
from payledger.models.usage import BUCKET_SUBSCRIPTION

from .. import ledger
from ..events import SubscriptionCreated, SubscriptionDeleted, SubscriptionUpdated
from ..router import DispatchOutcome, handles
from ..sync import sync_subscription

logger = logging.getLogger(__name__)


@handles(SubscriptionCreated, SubscriptionUpdated)
def handle_subscription_changed(event):
    if not event.customer_id:
        logger.error("Subscription %s has no customer; cannot sync", event.subscription_id)
        return DispatchOutcome.IGNORED
    sync_subscription(event.subscription_id, event.customer_id, event.metadata)
    return DispatchOutcome.HANDLED


@handles(SubscriptionDeleted)
def handle_subscription_deleted(event: SubscriptionDeleted):
    """Mirror the cancellation, then take back whatever subscription credits remain."""
    if not event.customer_id:
        logger.error("Subscription %s has no customer; cannot sync", event.subscription_id)
        return DispatchOutcome.IGNORED
    subscription = sync_subscription(event.subscription_id, event.customer_id, event.metadata)
    ledger.revoke(
        subscription.user_id,
        None,
        bucket=BUCKET_SUBSCRIPTION,
        log_type=LOG_CANCEL_REVOKE,
        notes=f"Subscription {event.subscription_id} ended; remaining credits revoked.",
        clear_allocation=True,
    )
    return DispatchOutcome.HANDLED

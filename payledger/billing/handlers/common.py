import logging
from typing import Callable, Optional, TypeVar

from flask import current_app

from payledger.services import notifications

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_currency(currency: Optional[str]) -> str:
    return (currency or current_app.config.get("DEFAULT_CURRENCY") or "usd").lower()


def grant_or_alert(fn: Callable[[], T], *, user_id, order_id, plan_id) -> T:
    """Run a credit grant for a paid order; alert once and re-raise if it fails for good."""
    try:
        return fn()
    except Exception as exc:
        logger.exception("CRITICAL: credit grant failed for user %s order %s", user_id, order_id)
        notifications.notify_credit_grant_failed(user_id=user_id, order_id=order_id, plan_id=plan_id, error=exc)
        raise

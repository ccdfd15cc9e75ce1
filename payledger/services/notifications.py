"""Operator alerts and user notices. All senders swallow delivery errors."""
import logging
from typing import Any, Dict, Iterable, Optional

from flask import current_app

from payledger.extensions import db
from payledger.models import User
from payledger.observability import log_event

from .email import absolute_url, send_email

logger = logging.getLogger(__name__)


def _admin_recipient() -> Optional[str]:
    admin = current_app.config.get("ADMIN_EMAIL")
    if not admin:
        logger.error("ADMIN_EMAIL is not configured; operator alert dropped")
    return admin


def _user_email(user_id: Optional[int]) -> Optional[str]:
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    return user.email if user else None


def notify_credit_grant_failed(*, user_id: Any, order_id: Any, plan_id: Any, error: Any) -> bool:
    """Critical alert: a paid order did not receive its credits."""
    log_event("credit_grant_failed", logging.ERROR, user_id=user_id, order_id=order_id, plan_id=plan_id, error=str(error))
    to = _admin_recipient()
    if not to:
        return False
    return send_email(
        to_email=to,
        subject=f"[CRITICAL] Credit grant failed for order {order_id}",
        template="credit_grant_failed",
        context={
            "admin_name": current_app.config.get("ADMIN_NAME") or "Admin",
            "user_id": user_id,
            "order_id": order_id,
            "plan_id": plan_id,
            "error": str(error),
        },
    )


def notify_fraud_warning(*, warning_id: str, charge_id: str, customer_id: Optional[str], amount: Any,
                         currency: Optional[str], fraud_type: Optional[str], description: Optional[str],
                         actions_taken: Iterable[str]) -> bool:
    to = _admin_recipient()
    if not to:
        return False
    return send_email(
        to_email=to,
        subject=f"[FRAUD WARNING] Early fraud warning on charge {charge_id}",
        template="fraud_warning_admin",
        context={
            "admin_name": current_app.config.get("ADMIN_NAME") or "Admin",
            "warning_id": warning_id,
            "charge_id": charge_id,
            "customer_id": customer_id,
            "amount": amount,
            "currency": (currency or "").upper(),
            "fraud_type": fraud_type or "Early Fraud Warning",
            "description": description,
            "actions_taken": list(actions_taken),
        },
    )


def send_invoice_payment_failed_email(*, user_id: Optional[int], invoice_id: Optional[str],
                                      subscription_id: Optional[str], amount: Any = None,
                                      currency: Optional[str] = None) -> bool:
    to = _user_email(user_id)
    if not to:
        logger.warning("No email address for user %s; payment failure notice skipped", user_id)
        return False
    return send_email(
        to_email=to,
        subject="Action required: your subscription payment failed",
        template="invoice_payment_failed",
        context={
            "invoice_id": invoice_id,
            "subscription_id": subscription_id,
            "amount": amount,
            "currency": (currency or "").upper(),
            "portal_url": absolute_url(current_app.config.get("CUSTOMER_PORTAL_PATH") or "/billing"),
        },
        user_id=user_id,
    )


def send_fraud_refund_email(*, user_id: Optional[int], charge: Dict[str, Any], refund_amount: Any) -> bool:
    to = _user_email(user_id) or ((charge.get("billing_details") or {}).get("email"))
    if not to:
        logger.warning("No email address for charge %s; fraud refund notice skipped", charge.get("id"))
        return False
    return send_email(
        to_email=to,
        subject="Your payment has been refunded",
        template="fraud_refund_user",
        context={
            "charge_id": charge.get("id"),
            "amount": refund_amount,
            "currency": (charge.get("currency") or "").upper(),
            "description": charge.get("description"),
        },
        user_id=user_id,
    )

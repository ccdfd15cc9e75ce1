"""Thin StripeClient wrapper. Every call returns plain dicts."""
import logging
from typing import Any, Dict, Optional

from flask import current_app
from stripe import StripeClient

logger = logging.getLogger(__name__)


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(key)


def _to_dict(obj: Any) -> Dict[str, Any]:
    # Stripe objects may need converting to dicts
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict_recursive") and not hasattr(obj, "to_dict"):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def retrieve_subscription(subscription_id: str) -> Dict[str, Any]:
    sub = _client().subscriptions.retrieve(subscription_id, params={"expand": ["customer"]})
    return _to_dict(sub)


def retrieve_customer(customer_id: str) -> Dict[str, Any]:
    return _to_dict(_client().customers.retrieve(customer_id))


def retrieve_invoice_payment_intent(invoice_id: str) -> Optional[str]:
    """Payment intent that settled an invoice, if Stripe reports one."""
    invoice = _to_dict(_client().invoices.retrieve(invoice_id, params={"expand": ["payments"]}))
    payments = (invoice.get("payments") or {}).get("data") or []
    if payments:
        intent = (payments[0].get("payment") or {}).get("payment_intent")
        if isinstance(intent, dict):
            intent = intent.get("id")
        if intent:
            return intent
    # Older API versions expose it directly on the invoice
    intent = invoice.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    return intent or None


def retrieve_charge(charge_id: str) -> Dict[str, Any]:
    return _to_dict(_client().charges.retrieve(charge_id))


def create_fraud_refund(charge_id: str) -> Dict[str, Any]:
    refund = _client().refunds.create(params={"charge": charge_id, "reason": "fraudulent"})
    return _to_dict(refund)


def cancel_latest_subscription(customer_id: str) -> Optional[str]:
    """Cancel the customer's most recent subscription. Returns its id, or None."""
    client = _client()
    listing = _to_dict(client.subscriptions.list(params={"customer": customer_id, "limit": 1}))
    data = listing.get("data") or []
    if not data:
        return None
    subscription_id = data[0].get("id")
    if not subscription_id:
        return None
    client.subscriptions.cancel(subscription_id)
    logger.info("Cancelled subscription %s for customer %s", subscription_id, customer_id)
    return subscription_id

"""Verification and typed parsing of Stripe webhook deliveries.

Every delivery is authenticated with ``stripe.WebhookSignature`` before its
body is trusted, then turned into one of the frozen event classes below.
Amounts stay in minor units (cents) at this layer.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, Union

import stripe

from .errors import InvalidSignature

logger = logging.getLogger(__name__)


def _obj_id(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


def _int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _sum_amounts(items: Any) -> int:
    return sum(int(i.get("amount") or 0) for i in (items or []) if isinstance(i, dict))


def _metadata(obj: Dict[str, Any]) -> Dict[str, str]:
    meta = obj.get("metadata") or {}
    return dict(meta) if isinstance(meta, dict) else {}


@dataclass(frozen=True)
class StripeEventBase:
    event_id: str
    event_type: str


@dataclass(frozen=True)
class CheckoutSessionCompleted(StripeEventBase):
    session_id: str
    mode: Optional[str]
    payment_status: Optional[str]
    payment_intent_id: Optional[str]
    customer_id: Optional[str]
    currency: Optional[str]
    amount_subtotal: Optional[int]
    amount_discount: int
    amount_tax: int
    amount_total: Optional[int]
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, event_id: str, event_type: str, obj: Dict[str, Any]) -> "CheckoutSessionCompleted":
        totals = obj.get("total_details") or {}
        return cls(
            event_id=event_id,
            event_type=event_type,
            session_id=obj.get("id") or "",
            mode=obj.get("mode"),
            payment_status=obj.get("payment_status"),
            payment_intent_id=_obj_id(obj.get("payment_intent")),
            customer_id=_obj_id(obj.get("customer")),
            currency=obj.get("currency"),
            amount_subtotal=_int(obj.get("amount_subtotal")),
            amount_discount=_int(totals.get("amount_discount")) or 0,
            amount_tax=_int(totals.get("amount_tax")) or 0,
            amount_total=_int(obj.get("amount_total")),
            metadata=_metadata(obj),
        )


@dataclass(frozen=True)
class _InvoiceEvent(StripeEventBase):
    invoice_id: Optional[str]
    status: Optional[str]
    billing_reason: Optional[str]
    subscription_id: Optional[str]
    customer_id: Optional[str]
    currency: Optional[str]
    amount_subtotal: int
    amount_discount: int
    amount_tax: int
    amount_paid: int
    amount_due: int
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, event_id: str, event_type: str, obj: Dict[str, Any]):
        # Newer API versions nest the subscription under parent.subscription_details
        parent = obj.get("parent") or {}
        details = parent.get("subscription_details") or {}
        subscription_id = _obj_id(details.get("subscription")) or _obj_id(obj.get("subscription"))
        return cls(
            event_id=event_id,
            event_type=event_type,
            invoice_id=obj.get("id"),
            status=obj.get("status"),
            billing_reason=obj.get("billing_reason"),
            subscription_id=subscription_id,
            customer_id=_obj_id(obj.get("customer")),
            currency=obj.get("currency"),
            amount_subtotal=_int(obj.get("subtotal")) or 0,
            amount_discount=_sum_amounts(obj.get("total_discount_amounts")),
            amount_tax=_sum_amounts(obj.get("total_taxes")) or (_int(obj.get("tax")) or 0),
            amount_paid=_int(obj.get("amount_paid")) or 0,
            amount_due=_int(obj.get("amount_due")) or 0,
            metadata=_metadata(obj),
        )


@dataclass(frozen=True)
class InvoicePaid(_InvoiceEvent):
    @property
    def is_paid_subscription_invoice(self) -> bool:
        return bool(
            self.status == "paid"
            and self.subscription_id
            and self.customer_id
            and self.invoice_id
            and (self.billing_reason or "").startswith("subscription")
        )


@dataclass(frozen=True)
class InvoicePaymentFailed(_InvoiceEvent):
    pass


@dataclass(frozen=True)
class _SubscriptionEvent(StripeEventBase):
    subscription_id: str
    customer_id: Optional[str]
    status: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, event_id: str, event_type: str, obj: Dict[str, Any]):
        return cls(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id") or "",
            customer_id=_obj_id(obj.get("customer")),
            status=obj.get("status"),
            metadata=_metadata(obj),
        )


@dataclass(frozen=True)
class SubscriptionCreated(_SubscriptionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionUpdated(_SubscriptionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionDeleted(_SubscriptionEvent):
    pass


@dataclass(frozen=True)
class ChargeRefunded(StripeEventBase):
    charge_id: str
    payment_intent_id: Optional[str]
    customer_id: Optional[str]
    refunded: bool
    amount: int
    amount_refunded: int
    currency: Optional[str]
    description: Optional[str]
    refund_reason: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, event_id: str, event_type: str, obj: Dict[str, Any]) -> "ChargeRefunded":
        refunds = (obj.get("refunds") or {}).get("data") or []
        reason = refunds[0].get("reason") if refunds and isinstance(refunds[0], dict) else None
        return cls(
            event_id=event_id,
            event_type=event_type,
            charge_id=obj.get("id") or "",
            payment_intent_id=_obj_id(obj.get("payment_intent")),
            customer_id=_obj_id(obj.get("customer")),
            refunded=bool(obj.get("refunded")),
            amount=_int(obj.get("amount")) or 0,
            amount_refunded=abs(_int(obj.get("amount_refunded")) or 0),
            currency=obj.get("currency"),
            description=obj.get("description"),
            refund_reason=reason,
            metadata=_metadata(obj),
        )


@dataclass(frozen=True)
class EarlyFraudWarningCreated(StripeEventBase):
    warning_id: str
    charge_id: Optional[str]
    fraud_type: Optional[str]

    @classmethod
    def from_object(cls, event_id: str, event_type: str, obj: Dict[str, Any]) -> "EarlyFraudWarningCreated":
        return cls(
            event_id=event_id,
            event_type=event_type,
            warning_id=obj.get("id") or "",
            charge_id=_obj_id(obj.get("charge")),
            fraud_type=obj.get("fraud_type"),
        )


@dataclass(frozen=True)
class UnhandledEvent(StripeEventBase):
    pass


StripeEvent = Union[
    CheckoutSessionCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    ChargeRefunded,
    EarlyFraudWarningCreated,
    UnhandledEvent,
]

EVENT_TYPES: Dict[str, Type] = {
    "checkout.session.completed": CheckoutSessionCompleted,
    "invoice.paid": InvoicePaid,
    "invoice.payment_failed": InvoicePaymentFailed,
    "customer.subscription.created": SubscriptionCreated,
    "customer.subscription.updated": SubscriptionUpdated,
    "customer.subscription.deleted": SubscriptionDeleted,
    "charge.refunded": ChargeRefunded,
    "radar.early_fraud_warning.created": EarlyFraudWarningCreated,
}


def parse_event(payload: Dict[str, Any]) -> StripeEvent:
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not isinstance(event_id, str) or not isinstance(event_type, str) or not event_id or not event_type:
        raise InvalidSignature("Malformed event")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise InvalidSignature("Malformed event")
    obj = data.get("object") or {}
    if not isinstance(obj, dict):
        raise InvalidSignature("Malformed event")
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        return UnhandledEvent(event_id=event_id, event_type=event_type)
    return cls.from_object(event_id, event_type, obj)


def verify_event(raw_body: bytes, signature_header: Optional[str], secret: Optional[str], tolerance: int = 300) -> StripeEvent:
    """Authenticate a webhook delivery and return its typed event.

    Raises ``InvalidSignature`` for a missing secret or header, a bad or
    stale HMAC, or a body that is not a Stripe event. The message never
    echoes the payload.
    """
    if not secret:
        raise InvalidSignature("Webhook secret is not configured")
    if not signature_header:
        raise InvalidSignature("Missing Stripe-Signature header")
    try:
        payload_str = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidSignature("Body is not valid UTF-8") from None
    try:
        stripe.WebhookSignature.verify_header(payload_str, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError:
        raise InvalidSignature("Signature verification failed") from None
    try:
        payload = json.loads(payload_str)
    except ValueError:
        raise InvalidSignature("Body is not JSON") from None
    if not isinstance(payload, dict):
        raise InvalidSignature("Malformed event")
    return parse_event(payload)

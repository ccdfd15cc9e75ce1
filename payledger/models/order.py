from sqlalchemy import func, UniqueConstraint
from payledger.extensions import db
from payledger.models.types import JSONType

ORDER_ONE_TIME_PURCHASE = "one_time_purchase"
ORDER_SUBSCRIPTION_INITIAL = "subscription_initial"
ORDER_SUBSCRIPTION_RENEWAL = "subscription_renewal"
ORDER_REFUND = "refund"

PURCHASE_ORDER_TYPES = (
    ORDER_ONE_TIME_PURCHASE,
    ORDER_SUBSCRIPTION_INITIAL,
    ORDER_SUBSCRIPTION_RENEWAL,
)

class Order(db.Model):
    """One row per external financial object. Append-only."""
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = db.Column(db.String(32), nullable=False, index=True)
    provider_order_id = db.Column(db.String(255), nullable=False)
    order_type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)

    stripe_payment_intent_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_invoice_id = db.Column(db.String(255), nullable=True)
    stripe_charge_id = db.Column(db.String(255), nullable=True, index=True)
    subscription_id = db.Column(db.String(255), nullable=True)

    plan_id = db.Column(db.Integer, db.ForeignKey("pricing_plans.id", ondelete="SET NULL"), nullable=True, index=True)
    price_id = db.Column(db.String(255), nullable=True)
    product_id = db.Column(db.String(255), nullable=True)

    amount_subtotal = db.Column(db.Numeric(12, 2), nullable=True)
    amount_discount = db.Column(db.Numeric(12, 2), nullable=True)
    amount_tax = db.Column(db.Numeric(12, 2), nullable=True)
    amount_total = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False)

    meta = db.Column("metadata", JSONType, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("provider", "provider_order_id", name="uq_orders_provider_provider_order_id"),
    )

    def to_dict(self) -> dict:
        def _money(value):
            return str(value) if value is not None else None

        return {
            "id": self.id,
            "orderType": self.order_type,
            "status": self.status,
            "providerOrderId": self.provider_order_id,
            "planId": self.plan_id,
            "priceId": self.price_id,
            "subscriptionId": self.subscription_id,
            "amountSubtotal": _money(self.amount_subtotal),
            "amountDiscount": _money(self.amount_discount),
            "amountTax": _money(self.amount_tax),
            "amountTotal": _money(self.amount_total),
            "currency": self.currency,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    @property
    def is_subscription_order(self) -> bool:
        return self.order_type in (ORDER_SUBSCRIPTION_INITIAL, ORDER_SUBSCRIPTION_RENEWAL)

    def __repr__(self) -> str:
        return f"<Order id={self.id} {self.provider}:{self.provider_order_id} type={self.order_type} total={self.amount_total}>"

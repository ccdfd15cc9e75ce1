from sqlalchemy import func
from payledger.extensions import db

LOG_PURCHASE = "purchase"
LOG_SUBSCRIPTION_GRANT = "subscription_grant"
LOG_CANCEL_REVOKE = "cancel_revoke"
LOG_REFUND_REVOKE = "refund_revoke"
LOG_FEATURE_USAGE = "feature_usage"
LOG_MANUAL_GRANT = "manual_grant"

class CreditLogEntry(db.Model):
    """Append-only ledger. Replaying ``amount`` per ``bucket`` in id order rebuilds the balances."""
    __tablename__ = "credit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)          # signed delta
    bucket = db.Column(db.String(16), nullable=False)       # one_time | subscription
    one_time_balance_after = db.Column(db.Integer, nullable=False)
    subscription_balance_after = db.Column(db.Integer, nullable=False)

    type = db.Column(db.String(32), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)
    related_order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": self.amount,
            "bucket": self.bucket,
            "oneTimeBalanceAfter": self.one_time_balance_after,
            "subscriptionBalanceAfter": self.subscription_balance_after,
            "type": self.type,
            "notes": self.notes,
            "relatedOrderId": self.related_order_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<CreditLogEntry id={self.id} user_id={self.user_id} {self.bucket}{self.amount:+d} type={self.type}>"

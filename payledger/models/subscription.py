from sqlalchemy import func, text
from payledger.extensions import db
from payledger.models.types import JSONType

class Subscription(db.Model):
    """Local mirror of a Stripe subscription; overwritten on every sync."""
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("pricing_plans.id", ondelete="RESTRICT"), nullable=False, index=True)

    stripe_subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(64), nullable=False)
    price_id = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(32), nullable=False, index=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_start = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)

    meta = db.Column("metadata", JSONType, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} user_id={self.user_id} status={self.status!r} price_id={self.price_id!r}>"

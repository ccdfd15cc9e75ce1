from sqlalchemy import func, text
from payledger.extensions import db
from payledger.models.types import JSONType

class PricingPlan(db.Model):
    """Plan catalogue row. Read-only for the ledger: only ``benefits_json`` and
    ``recurring_interval`` drive credit amounts."""
    __tablename__ = "pricing_plans"

    id = db.Column(db.Integer, primary_key=True)
    card_title = db.Column(db.String(255), nullable=False)

    stripe_price_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_product_id = db.Column(db.String(255), nullable=True)

    payment_type = db.Column(db.String(50), nullable=True)        # one_time | recurring
    recurring_interval = db.Column(db.String(50), nullable=True)  # month | year
    price = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(10), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, server_default=text("true"), default=True)

    # {"oneTimeCredits": int, "monthlyCredits": int, "totalMonths": int}
    benefits_json = db.Column(JSONType, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<PricingPlan id={self.id} title={self.card_title!r} interval={self.recurring_interval!r}>"

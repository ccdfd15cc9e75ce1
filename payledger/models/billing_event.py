from sqlalchemy import func
from payledger.extensions import db
from payledger.models.types import JSONType

class BillingEventLog(db.Model):
    """Audit trail of Stripe deliveries. Not an idempotency gate: redeliveries are reprocessed."""
    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    payload = db.Column(JSONType, nullable=False, default=dict)
    retries = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<BillingEventLog {self.stripe_event_id} type={self.type} retries={self.retries}>"

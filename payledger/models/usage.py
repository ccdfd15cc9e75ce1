from sqlalchemy import func, CheckConstraint
from payledger.extensions import db
from payledger.models.types import JSONType
from payledger.billing.allocation import Allocation, allocation_from_json, allocation_to_json

BUCKET_ONE_TIME = "one_time"
BUCKET_SUBSCRIPTION = "subscription"

class UsageBalance(db.Model):
    """Spendable credits, one row per user. Only payledger.billing.ledger writes it."""
    __tablename__ = "usage_balances"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    subscription_credits_balance = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    one_time_credits_balance = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    balance_json = db.Column(JSONType, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("subscription_credits_balance >= 0", name="ck_usage_subscription_non_negative"),
        CheckConstraint("one_time_credits_balance >= 0", name="ck_usage_one_time_non_negative"),
    )

    @property
    def allocation(self) -> Allocation:
        return allocation_from_json(self.balance_json)

    @allocation.setter
    def allocation(self, value: Allocation) -> None:
        # Reassign (never mutate) so the JSON column is flagged dirty
        self.balance_json = allocation_to_json(value)

    @property
    def total(self) -> int:
        return (self.subscription_credits_balance or 0) + (self.one_time_credits_balance or 0)

    def get_bucket(self, bucket: str) -> int:
        if bucket == BUCKET_ONE_TIME:
            return self.one_time_credits_balance or 0
        if bucket == BUCKET_SUBSCRIPTION:
            return self.subscription_credits_balance or 0
        raise ValueError(f"Unknown credit bucket {bucket!r}")

    def set_bucket(self, bucket: str, value: int) -> None:
        if bucket == BUCKET_ONE_TIME:
            self.one_time_credits_balance = value
        elif bucket == BUCKET_SUBSCRIPTION:
            self.subscription_credits_balance = value
        else:
            raise ValueError(f"Unknown credit bucket {bucket!r}")

    def __repr__(self) -> str:
        return (
            f"<UsageBalance user_id={self.user_id} subscription={self.subscription_credits_balance} "
            f"one_time={self.one_time_credits_balance}>"
        )

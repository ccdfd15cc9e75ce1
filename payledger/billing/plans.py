"""Read-only access to plan benefits."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select

from payledger.extensions import db
from payledger.models import PricingPlan

INTERVAL_MONTH = "month"
INTERVAL_YEAR = "year"


def _non_negative(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class PlanBenefits:
    plan_id: int
    recurring_interval: Optional[str]
    one_time_credits: int = 0
    monthly_credits: int = 0
    total_months: int = 0

    @classmethod
    def from_json(cls, plan_id: int, recurring_interval: Optional[str], doc: Optional[Dict[str, Any]]) -> "PlanBenefits":
        doc = doc or {}
        return cls(
            plan_id=plan_id,
            recurring_interval=(recurring_interval or None) and recurring_interval.lower(),
            one_time_credits=_non_negative(doc.get("oneTimeCredits")),
            monthly_credits=_non_negative(doc.get("monthlyCredits")),
            total_months=_non_negative(doc.get("totalMonths")),
        )

    @property
    def is_yearly(self) -> bool:
        return self.recurring_interval == INTERVAL_YEAR

    @property
    def is_monthly(self) -> bool:
        return self.recurring_interval == INTERVAL_MONTH


def get_plan_benefits(plan_id: Optional[int]) -> Optional[PlanBenefits]:
    if plan_id is None:
        return None
    plan = db.session.get(PricingPlan, plan_id)
    if plan is None:
        return None
    return PlanBenefits.from_json(plan.id, plan.recurring_interval, plan.benefits_json)


def find_plan_id_by_price(price_id: Optional[str]) -> Optional[int]:
    if not price_id:
        return None
    return db.session.execute(
        select(PricingPlan.id).where(PricingPlan.stripe_price_id == price_id).order_by(PricingPlan.id).limit(1)
    ).scalar_one_or_none()

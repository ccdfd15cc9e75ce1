"""Subscription credit allocation schedules.

The usage row carries a small JSON side-channel describing how the current
subscription balance was allocated. It holds at most one schedule:

* ``{"monthlyAllocationDetails": {"monthlyCredits": 100}}``
* ``{"yearlyAllocationDetails": {"monthlyCredits": 100, "remainingMonths": 11,
  "nextCreditDate": "2024-02-15", "lastAllocatedMonth": "2024-01"}}``
* ``{}``

In code it is the sum type ``MonthlyAllocation | YearlyAllocation | None``.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

MONTHLY_KEY = "monthlyAllocationDetails"
YEARLY_KEY = "yearlyAllocationDetails"


def add_months(value: date, months: int) -> date:
    """Same day ``months`` later, clamped to the last day of the target month."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


@dataclass(frozen=True)
class MonthlyAllocation:
    monthly_credits: int

    def to_json(self) -> Dict[str, Any]:
        return {MONTHLY_KEY: {"monthlyCredits": self.monthly_credits}}


@dataclass(frozen=True)
class YearlyAllocation:
    monthly_credits: int
    remaining_months: int
    next_credit_date: date
    last_allocated_month: str

    @classmethod
    def seed(cls, *, monthly_credits: int, total_months: int, start: date) -> "YearlyAllocation":
        """Schedule after the first month of a yearly plan has been granted."""
        return cls(
            monthly_credits=monthly_credits,
            remaining_months=max(total_months - 1, 0),
            next_credit_date=add_months(start, 1),
            last_allocated_month=month_key(start),
        )

    def is_due(self, today: date) -> bool:
        return (
            self.remaining_months > 0
            and self.next_credit_date <= today
            and self.last_allocated_month != month_key(self.next_credit_date)
        )

    def advance(self) -> "YearlyAllocation":
        return replace(
            self,
            remaining_months=self.remaining_months - 1,
            next_credit_date=add_months(self.next_credit_date, 1),
            last_allocated_month=month_key(self.next_credit_date),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            YEARLY_KEY: {
                "monthlyCredits": self.monthly_credits,
                "remainingMonths": self.remaining_months,
                "nextCreditDate": self.next_credit_date.isoformat(),
                "lastAllocatedMonth": self.last_allocated_month,
            }
        }


Allocation = Optional[Union[MonthlyAllocation, YearlyAllocation]]


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def allocation_from_json(doc: Optional[Dict[str, Any]]) -> Allocation:
    doc = doc or {}
    yearly = doc.get(YEARLY_KEY)
    if isinstance(yearly, dict):
        next_date = _parse_date(yearly.get("nextCreditDate"))
        if next_date is not None:
            return YearlyAllocation(
                monthly_credits=_as_int(yearly.get("monthlyCredits")),
                remaining_months=_as_int(yearly.get("remainingMonths")),
                next_credit_date=next_date,
                last_allocated_month=str(yearly.get("lastAllocatedMonth") or ""),
            )
    monthly = doc.get(MONTHLY_KEY)
    if isinstance(monthly, dict):
        return MonthlyAllocation(monthly_credits=_as_int(monthly.get("monthlyCredits")))
    return None


def allocation_to_json(allocation: Allocation) -> Dict[str, Any]:
    if allocation is None:
        return {}
    return allocation.to_json()

from datetime import date

from payledger.billing.allocation import (
    MonthlyAllocation,
    YearlyAllocation,
    add_months,
    allocation_from_json,
    allocation_to_json,
)


def test_add_months_clamps_day_of_month():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)
    assert add_months(date(2024, 3, 31), 13) == date(2025, 4, 30)


def test_yearly_seed_from_start_date():
    alloc = YearlyAllocation.seed(monthly_credits=100, total_months=12, start=date(2024, 1, 15))
    assert alloc.remaining_months == 11
    assert alloc.next_credit_date == date(2024, 2, 15)
    assert alloc.last_allocated_month == "2024-01"
    assert allocation_to_json(alloc) == {
        "yearlyAllocationDetails": {
            "monthlyCredits": 100,
            "remainingMonths": 11,
            "nextCreditDate": "2024-02-15",
            "lastAllocatedMonth": "2024-01",
        }
    }


def test_is_due_and_advance():
    alloc = YearlyAllocation.seed(monthly_credits=100, total_months=3, start=date(2024, 1, 15))
    assert not alloc.is_due(date(2024, 2, 14))
    assert alloc.is_due(date(2024, 2, 15))

    nxt = alloc.advance()
    assert nxt.remaining_months == 1
    assert nxt.next_credit_date == date(2024, 3, 15)
    assert nxt.last_allocated_month == "2024-02"

    last = nxt.advance()
    assert last.remaining_months == 0
    assert not last.is_due(date(2030, 1, 1))


def test_json_round_trip_and_legacy_timestamps():
    assert allocation_from_json({}) is None
    assert allocation_from_json(None) is None
    assert allocation_from_json({"monthlyAllocationDetails": {"monthlyCredits": 50}}) == MonthlyAllocation(50)

    # Older rows stored a full ISO timestamp for the next credit date
    legacy = {
        "yearlyAllocationDetails": {
            "monthlyCredits": 10,
            "remainingMonths": 4,
            "nextCreditDate": "2024-05-01T00:00:00.000Z",
            "lastAllocatedMonth": "2024-04",
        }
    }
    alloc = allocation_from_json(legacy)
    assert isinstance(alloc, YearlyAllocation)
    assert alloc.next_credit_date == date(2024, 5, 1)

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from payledger.billing import ledger
from payledger.billing.allocation import MonthlyAllocation, YearlyAllocation
from payledger.billing.errors import InsufficientCredits
from payledger.billing.retry import RetryPolicy
from payledger.extensions import db
from payledger.models import CreditLogEntry, UsageBalance
from payledger.models.credit_log import LOG_CANCEL_REVOKE, LOG_PURCHASE, LOG_REFUND_REVOKE
from payledger.models.usage import BUCKET_ONE_TIME, BUCKET_SUBSCRIPTION


def _logs(user_id):
    return db.session.execute(
        select(CreditLogEntry).where(CreditLogEntry.user_id == user_id).order_by(CreditLogEntry.id)
    ).scalars().all()


def test_grant_creates_usage_row_and_logs(ctx, make_user):
    uid = make_user()
    entry = ledger.grant(uid, 500, bucket=BUCKET_ONE_TIME, log_type=LOG_PURCHASE)

    usage = ledger.get_usage(uid)
    assert usage.one_time_credits_balance == 500
    assert usage.subscription_credits_balance == 0
    assert entry.amount == 500
    assert entry.one_time_balance_after == 500
    assert entry.type == LOG_PURCHASE


def test_grant_non_positive_is_noop(ctx, make_user):
    uid = make_user()
    assert ledger.grant(uid, 0) is None
    assert ledger.grant(uid, -5) is None
    assert ledger.get_usage(uid) is None
    assert _logs(uid) == []


def test_set_subscription_balance_logs_signed_delta(ctx, make_user):
    uid = make_user()
    ledger.set_subscription_balance(uid, 100, allocation=MonthlyAllocation(100))
    ledger.deduct(uid, 30, notes="render")
    entry = ledger.set_subscription_balance(uid, 100, allocation=MonthlyAllocation(100))

    assert entry.amount == 30  # 70 -> 100
    usage = ledger.get_usage(uid)
    assert usage.subscription_credits_balance == 100
    assert usage.balance_json == {"monthlyAllocationDetails": {"monthlyCredits": 100}}
    assert ledger.verify_ledger(uid).ok


def test_set_subscription_balance_replaces_allocation_kind(ctx, make_user):
    uid = make_user()
    yearly = YearlyAllocation.seed(monthly_credits=10, total_months=12, start=date(2024, 1, 15))
    ledger.set_subscription_balance(uid, 10, allocation=yearly)
    ledger.set_subscription_balance(uid, 50, allocation=MonthlyAllocation(50))
    assert ledger.get_usage(uid).balance_json == {"monthlyAllocationDetails": {"monthlyCredits": 50}}


def test_revoke_clamps_at_zero_and_logs_actual_amount(ctx, make_user):
    uid = make_user()
    ledger.grant(uid, 200, bucket=BUCKET_ONE_TIME)
    ledger.deduct(uid, 150, notes="usage")

    entry = ledger.revoke(uid, 500, bucket=BUCKET_ONE_TIME, log_type=LOG_REFUND_REVOKE)
    assert entry.amount == -50
    assert ledger.get_usage(uid).one_time_credits_balance == 0

    # Nothing left: no further log rows
    assert ledger.revoke(uid, 500, bucket=BUCKET_ONE_TIME, log_type=LOG_REFUND_REVOKE) is None
    assert [e.amount for e in _logs(uid)] == [200, -150, -50]


def test_revoke_without_usage_row_is_noop(ctx, make_user):
    uid = make_user()
    assert ledger.revoke(uid, 10, bucket=BUCKET_SUBSCRIPTION, log_type=LOG_CANCEL_REVOKE) is None
    assert ledger.get_usage(uid) is None


def test_revoke_whole_bucket_and_clear_allocation(ctx, make_user):
    uid = make_user()
    ledger.set_subscription_balance(uid, 80, allocation=MonthlyAllocation(80))
    entry = ledger.revoke(uid, None, bucket=BUCKET_SUBSCRIPTION, log_type=LOG_CANCEL_REVOKE, clear_allocation=True)
    usage = ledger.get_usage(uid)
    assert entry.amount == -80
    assert usage.subscription_credits_balance == 0
    assert usage.balance_json == {}


def test_deduct_subscription_first_then_one_time(ctx, make_user):
    uid = make_user()
    ledger.set_subscription_balance(uid, 30, allocation=MonthlyAllocation(30))
    ledger.grant(uid, 50, bucket=BUCKET_ONE_TIME)

    entries = ledger.deduct(uid, 45, notes="video export")
    assert [(e.bucket, e.amount) for e in entries] == [(BUCKET_SUBSCRIPTION, -30), (BUCKET_ONE_TIME, -15)]
    usage = ledger.get_usage(uid)
    assert usage.subscription_credits_balance == 0
    assert usage.one_time_credits_balance == 35


def test_deduct_insufficient_raises_and_changes_nothing(ctx, make_user):
    uid = make_user()
    ledger.grant(uid, 10, bucket=BUCKET_ONE_TIME)
    with pytest.raises(InsufficientCredits) as exc:
        ledger.deduct(uid, 11, notes="too much")
    assert exc.value.available == 10
    assert ledger.get_usage(uid).one_time_credits_balance == 10
    assert len(_logs(uid)) == 1


def test_ledger_replay_reconstructs_balances(ctx, make_user):
    uid = make_user()
    ledger.grant(uid, 300, bucket=BUCKET_ONE_TIME)
    ledger.set_subscription_balance(uid, 100, allocation=MonthlyAllocation(100))
    ledger.deduct(uid, 120, notes="a")
    ledger.set_subscription_balance(uid, 100, allocation=MonthlyAllocation(100))
    ledger.revoke(uid, 50, bucket=BUCKET_ONE_TIME, log_type=LOG_REFUND_REVOKE)
    ledger.revoke(uid, None, bucket=BUCKET_SUBSCRIPTION, log_type=LOG_CANCEL_REVOKE, clear_allocation=True)

    totals = ledger.reconstruct_balances(uid)
    usage = ledger.get_usage(uid)
    assert totals[BUCKET_ONE_TIME] == usage.one_time_credits_balance == 230
    assert totals[BUCKET_SUBSCRIPTION] == usage.subscription_credits_balance == 0
    assert ledger.verify_ledger(uid).ok


def test_verify_ledger_detects_drift(ctx, make_user):
    uid = make_user()
    ledger.grant(uid, 10, bucket=BUCKET_ONE_TIME)
    usage = ledger.get_usage(uid)
    usage.one_time_credits_balance = 99
    db.session.commit()

    check = ledger.verify_ledger(uid)
    assert not check.ok
    assert check.expected_one_time == 10
    assert check.actual_one_time == 99


def test_yearly_catch_up_allocates_each_due_month_once(ctx, make_user):
    uid = make_user()
    yearly = YearlyAllocation.seed(monthly_credits=100, total_months=12, start=date(2024, 1, 15))
    ledger.set_subscription_balance(uid, 100, allocation=yearly)
    ledger.deduct(uid, 60, notes="use")

    entries = ledger.allocate_due_yearly_credits(uid, today=date(2024, 4, 20))
    assert len(entries) == 3  # Feb, Mar, Apr
    assert entries[0].amount == 60  # 40 -> 100
    assert entries[1].amount == 0

    alloc = ledger.get_usage(uid).allocation
    assert alloc.remaining_months == 8
    assert alloc.next_credit_date == date(2024, 5, 15)
    assert alloc.last_allocated_month == "2024-04"
    assert ledger.get_usage(uid).subscription_credits_balance == 100

    # Same day again: nothing due
    assert ledger.allocate_due_yearly_credits(uid, today=date(2024, 4, 20)) == []
    assert ledger.verify_ledger(uid).ok


def test_yearly_catch_up_ignores_monthly_plans(ctx, make_user):
    uid = make_user()
    ledger.set_subscription_balance(uid, 100, allocation=MonthlyAllocation(100))
    assert ledger.allocate_due_yearly_credits(uid, today=date(2030, 1, 1)) == []
    assert ledger.users_with_yearly_allocations() == []


def test_grant_retries_transient_errors(ctx, make_user, monkeypatch):
    uid = make_user()
    real_lock = ledger._lock_usage_row
    calls = {"n": 0}

    def flaky_lock(user_id, create):
        calls["n"] += 1
        if calls["n"] < 3:
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("deadlock detected"))
        return real_lock(user_id, create)

    monkeypatch.setattr(ledger, "_lock_usage_row", flaky_lock)
    sleeps = []
    entry = ledger.grant(uid, 5, bucket=BUCKET_ONE_TIME, policy=RetryPolicy(backoff_seconds=1, sleep=sleeps.append))
    assert entry.amount == 5
    assert sleeps == [1, 2]
    assert db.session.execute(select(UsageBalance)).scalars().one().one_time_credits_balance == 5

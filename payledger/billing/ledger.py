"""Credit Ledger Engine.

Every mutation is one transaction: ensure the usage row exists, lock it
``FOR UPDATE``, change the balance, append a ``credit_logs`` row, commit.
Transient database errors retry under the configured ``RetryPolicy``; the
last error is re-raised. Replaying ``credit_logs.amount`` per bucket from
zero always reproduces the stored balances.
"""
import logging
from datetime import date
from typing import Callable, List, NamedTuple, Optional, TypeVar

from flask import current_app
from sqlalchemy import select

from payledger.extensions import db
from payledger.models import CreditLogEntry, UsageBalance
from payledger.models.credit_log import (
    LOG_FEATURE_USAGE,
    LOG_MANUAL_GRANT,
    LOG_SUBSCRIPTION_GRANT,
)
from payledger.models.usage import BUCKET_ONE_TIME, BUCKET_SUBSCRIPTION
from payledger.observability import log_event
from payledger.utils.helpers import dialect_insert, utcnow

from .allocation import Allocation, YearlyAllocation
from .errors import InsufficientCredits
from .retry import RetryPolicy, policy_from_config

logger = logging.getLogger(__name__)

BUCKETS = (BUCKET_ONE_TIME, BUCKET_SUBSCRIPTION)

T = TypeVar("T")


def _policy() -> RetryPolicy:
    return policy_from_config(current_app.config)


def _transaction(label: str, fn: Callable[[], T], policy: Optional[RetryPolicy] = None) -> T:
    def attempt() -> T:
        try:
            result = fn()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return (policy or _policy()).run(attempt, label=label)


def _lock_usage_row(user_id: int, create: bool) -> Optional[UsageBalance]:
    if create:
        stmt = (
            dialect_insert(UsageBalance.__table__)
            .values(user_id=user_id, subscription_credits_balance=0, one_time_credits_balance=0, balance_json={})
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        db.session.execute(stmt)
    return db.session.execute(
        select(UsageBalance)
        .where(UsageBalance.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _append_log(usage: UsageBalance, *, amount: int, bucket: str, log_type: str,
                notes: Optional[str], order_id: Optional[int]) -> CreditLogEntry:
    entry = CreditLogEntry(
        user_id=usage.user_id,
        amount=amount,
        bucket=bucket,
        one_time_balance_after=usage.one_time_credits_balance,
        subscription_balance_after=usage.subscription_credits_balance,
        type=log_type,
        notes=notes,
        related_order_id=order_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _check_bucket(bucket: str) -> None:
    if bucket not in BUCKETS:
        raise ValueError(f"Unknown credit bucket {bucket!r}")


def get_usage(user_id: int) -> Optional[UsageBalance]:
    return db.session.execute(
        select(UsageBalance).where(UsageBalance.user_id == user_id)
    ).scalar_one_or_none()


def grant(user_id: int, amount: int, *, bucket: str = BUCKET_ONE_TIME, order_id: Optional[int] = None,
          log_type: str = LOG_MANUAL_GRANT, notes: Optional[str] = None,
          policy: Optional[RetryPolicy] = None) -> Optional[CreditLogEntry]:
    """Add ``amount`` credits to one bucket. Non-positive amounts are a no-op."""
    _check_bucket(bucket)
    if amount is None or amount <= 0:
        return None

    def work() -> CreditLogEntry:
        usage = _lock_usage_row(user_id, create=True)
        usage.set_bucket(bucket, usage.get_bucket(bucket) + amount)
        return _append_log(usage, amount=amount, bucket=bucket, log_type=log_type, notes=notes, order_id=order_id)

    entry = _transaction(f"grant user={user_id}", work, policy)
    log_event("credit_grant", user_id=user_id, amount=amount, bucket=bucket, type=log_type, order_id=order_id)
    return entry


def set_subscription_balance(user_id: int, amount: int, *, order_id: Optional[int] = None,
                             allocation: Allocation = None, notes: Optional[str] = None,
                             policy: Optional[RetryPolicy] = None) -> CreditLogEntry:
    """Overwrite the subscription balance and replace the allocation schedule.

    The log row carries the signed difference to the previous balance.
    """
    new_balance = max(int(amount or 0), 0)

    def work() -> CreditLogEntry:
        usage = _lock_usage_row(user_id, create=True)
        delta = new_balance - (usage.subscription_credits_balance or 0)
        usage.subscription_credits_balance = new_balance
        usage.allocation = allocation
        return _append_log(
            usage, amount=delta, bucket=BUCKET_SUBSCRIPTION, log_type=LOG_SUBSCRIPTION_GRANT,
            notes=notes, order_id=order_id,
        )

    entry = _transaction(f"set_subscription_balance user={user_id}", work, policy)
    log_event("subscription_balance_set", user_id=user_id, balance=new_balance, order_id=order_id,
              allocation=type(allocation).__name__ if allocation is not None else None)
    return entry


def revoke(user_id: int, amount: Optional[int], *, bucket: str, log_type: str,
           order_id: Optional[int] = None, notes: Optional[str] = None, clear_allocation: bool = False,
           policy: Optional[RetryPolicy] = None) -> Optional[CreditLogEntry]:
    """Remove up to ``amount`` credits from ``bucket`` (``None`` takes the whole bucket).

    The balance is clamped at zero. A log row is written only when something
    was actually removed. Missing usage rows are a no-op.
    """
    _check_bucket(bucket)
    if amount is not None and amount <= 0 and not clear_allocation:
        return None

    def work() -> Optional[CreditLogEntry]:
        usage = _lock_usage_row(user_id, create=False)
        if usage is None:
            return None
        current = usage.get_bucket(bucket)
        wanted = current if amount is None else max(int(amount), 0)
        actual = min(wanted, current)
        usage.set_bucket(bucket, current - actual)
        if clear_allocation:
            usage.allocation = None
        if actual <= 0:
            return None
        return _append_log(usage, amount=-actual, bucket=bucket, log_type=log_type, notes=notes, order_id=order_id)

    entry = _transaction(f"revoke user={user_id}", work, policy)
    log_event("credit_revoke", user_id=user_id, requested=amount, revoked=-(entry.amount) if entry else 0,
              bucket=bucket, type=log_type, order_id=order_id, cleared_allocation=clear_allocation)
    return entry


def deduct(user_id: int, amount: int, *, notes: str,
           policy: Optional[RetryPolicy] = None) -> List[CreditLogEntry]:
    """Consume credits, subscription bucket first. Raises ``InsufficientCredits``."""
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError("amount must be a positive integer")

    def work() -> List[CreditLogEntry]:
        usage = _lock_usage_row(user_id, create=False)
        available = usage.total if usage is not None else 0
        if usage is None or available < amount:
            raise InsufficientCredits(amount, available)

        from_subscription = min(amount, usage.subscription_credits_balance)
        from_one_time = amount - from_subscription
        entries = []
        if from_subscription > 0:
            usage.subscription_credits_balance -= from_subscription
            entries.append(_append_log(usage, amount=-from_subscription, bucket=BUCKET_SUBSCRIPTION,
                                       log_type=LOG_FEATURE_USAGE, notes=notes, order_id=None))
        if from_one_time > 0:
            usage.one_time_credits_balance -= from_one_time
            entries.append(_append_log(usage, amount=-from_one_time, bucket=BUCKET_ONE_TIME,
                                       log_type=LOG_FEATURE_USAGE, notes=notes, order_id=None))
        return entries

    entries = _transaction(f"deduct user={user_id}", work, policy)
    log_event("credit_deduct", user_id=user_id, amount=amount, rows=len(entries))
    return entries


def allocate_due_yearly_credits(user_id: int, today: Optional[date] = None,
                                policy: Optional[RetryPolicy] = None) -> List[CreditLogEntry]:
    """Catch up a yearly schedule: each due month resets the subscription balance."""
    today = today or utcnow().date()

    def work() -> List[CreditLogEntry]:
        usage = _lock_usage_row(user_id, create=False)
        if usage is None:
            return []
        allocation = usage.allocation
        if not isinstance(allocation, YearlyAllocation):
            return []
        entries = []
        while allocation.is_due(today):
            month = allocation.next_credit_date
            delta = allocation.monthly_credits - (usage.subscription_credits_balance or 0)
            usage.subscription_credits_balance = allocation.monthly_credits
            allocation = allocation.advance()
            entries.append(_append_log(
                usage, amount=delta, bucket=BUCKET_SUBSCRIPTION, log_type=LOG_SUBSCRIPTION_GRANT,
                notes=f"Yearly plan monthly allocation for {month:%Y-%m}", order_id=None,
            ))
        if entries:
            usage.allocation = allocation
        return entries

    entries = _transaction(f"allocate_yearly user={user_id}", work, policy)
    if entries:
        log_event("yearly_allocation", user_id=user_id, months=len(entries))
    return entries


def users_with_yearly_allocations() -> List[int]:
    rows = db.session.execute(select(UsageBalance.user_id, UsageBalance.balance_json)).all()
    return [user_id for user_id, doc in rows if isinstance(doc, dict) and doc.get("yearlyAllocationDetails")]


class LedgerCheck(NamedTuple):
    user_id: int
    expected_one_time: int
    expected_subscription: int
    actual_one_time: int
    actual_subscription: int

    @property
    def ok(self) -> bool:
        return (self.expected_one_time == self.actual_one_time
                and self.expected_subscription == self.actual_subscription)


def reconstruct_balances(user_id: int) -> dict:
    """Fold logged deltas per bucket, oldest first, starting from zero."""
    totals = {bucket: 0 for bucket in BUCKETS}
    rows = db.session.execute(
        select(CreditLogEntry.bucket, CreditLogEntry.amount)
        .where(CreditLogEntry.user_id == user_id)
        .order_by(CreditLogEntry.id.asc())
    ).all()
    for bucket, amount in rows:
        totals[bucket] = totals.get(bucket, 0) + (amount or 0)
    return totals


def verify_ledger(user_id: int) -> LedgerCheck:
    totals = reconstruct_balances(user_id)
    usage = get_usage(user_id)
    check = LedgerCheck(
        user_id=user_id,
        expected_one_time=totals[BUCKET_ONE_TIME],
        expected_subscription=totals[BUCKET_SUBSCRIPTION],
        actual_one_time=usage.one_time_credits_balance if usage else 0,
        actual_subscription=usage.subscription_credits_balance if usage else 0,
    )
    if not check.ok:
        log_event("ledger_drift", logging.ERROR, **check._asdict())
    return check


def revoke_current_allocation(user_id: int, *, log_type: str, order_id: Optional[int] = None,
                              notes: Optional[str] = None,
                              policy: Optional[RetryPolicy] = None) -> Optional[CreditLogEntry]:
    """Take back one month of the current schedule and drop the schedule."""

    def work() -> Optional[CreditLogEntry]:
        usage = _lock_usage_row(user_id, create=False)
        if usage is None:
            return None
        allocation = usage.allocation
        monthly = allocation.monthly_credits if allocation is not None else 0
        current = usage.subscription_credits_balance or 0
        actual = min(monthly, current)
        usage.subscription_credits_balance = current - actual
        usage.allocation = None
        if actual <= 0:
            return None
        return _append_log(usage, amount=-actual, bucket=BUCKET_SUBSCRIPTION, log_type=log_type,
                           notes=notes, order_id=order_id)

    entry = _transaction(f"revoke_allocation user={user_id}", work, policy)
    log_event("credit_revoke", user_id=user_id, revoked=-(entry.amount) if entry else 0,
              bucket=BUCKET_SUBSCRIPTION, type=log_type, order_id=order_id, cleared_allocation=True)
    return entry

import pytest
from sqlalchemy.exc import OperationalError

from payledger.billing.retry import RetryPolicy


def _db_error():
    return OperationalError("UPDATE usage_balances", {}, Exception("database is locked"))


def test_retry_succeeds_after_transient_errors():
    sleeps = []
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise _db_error()
        return "ok"

    policy = RetryPolicy(max_attempts=3, backoff_seconds=1.0, sleep=sleeps.append)
    assert policy.run(flaky) == "ok"
    assert calls["n"] == 3
    # Linear backoff: 1s after attempt 1, 2s after attempt 2
    assert sleeps == [1.0, 2.0]


def test_retry_reraises_last_error_without_sleeping_after_final_attempt():
    sleeps = []
    rollbacks = []

    def always_fails():
        raise _db_error()

    policy = RetryPolicy(max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append)
    with pytest.raises(OperationalError):
        policy.run(always_fails, on_error=rollbacks.append)
    assert sleeps == [0.5, 1.0]
    assert len(rollbacks) == 3


def test_non_retryable_errors_propagate_immediately():
    calls = {"n": 0}

    def broken():
        calls["n"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        RetryPolicy(sleep=lambda s: None).run(broken)
    assert calls["n"] == 1


def test_zero_backoff_never_sleeps():
    sleeps = []
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] == 1:
            raise _db_error()
        return calls["n"]

    assert RetryPolicy(backoff_seconds=0, sleep=sleeps.append).run(flaky) == 2
    assert sleeps == []

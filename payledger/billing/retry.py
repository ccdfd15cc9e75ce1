"""Bounded retry for ledger transactions."""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    retry_on: Tuple[Type[BaseException], ...] = (SQLAlchemyError,)
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Linear backoff: attempt 1 waits ``backoff_seconds``, attempt 2 twice that."""
        return self.backoff_seconds * attempt

    def run(self, fn: Callable[[], T], *, label: str = "operation", on_error: Optional[Callable[[BaseException], None]] = None) -> T:
        """Call ``fn`` until it succeeds or attempts run out; then re-raise the last error.

        ``on_error`` runs after every failed attempt (typically a session rollback).
        Errors outside ``retry_on`` propagate immediately.
        """
        attempts = max(int(self.max_attempts), 1)
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except self.retry_on as exc:
                if on_error is not None:
                    on_error(exc)
                if attempt >= attempts:
                    logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.warning("%s attempt %d/%d failed (%s); retrying in %.2fs", label, attempt, attempts, exc, delay)
                if delay > 0:
                    self.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover


def policy_from_config(config) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=int(config.get("CREDIT_RETRY_ATTEMPTS", 3)),
        backoff_seconds=float(config.get("CREDIT_RETRY_BACKOFF_SECONDS", 1.0)),
    )

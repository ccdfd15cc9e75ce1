"""Stripe payment-event reconciliation and the credit ledger."""
from .events import verify_event
from .router import DispatchOutcome, dispatch

__all__ = ["verify_event", "dispatch", "DispatchOutcome"]

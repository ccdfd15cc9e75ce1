from datetime import timezone

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import func, select

from payledger.billing import ledger
from payledger.billing.allocation import YearlyAllocation
from payledger.billing.errors import InsufficientCredits
from payledger.extensions import db, limiter
from payledger.models import CreditLogEntry, Order, Subscription
from payledger.utils.helpers import utcnow

billing_bp = Blueprint("billing", __name__)

ACTIVE_STATUSES = ("active", "trialing")
MAX_PAGE_SIZE = 100


def _pagination():
    try:
        page = max(int(request.args.get("page", 1)), 1)
        page_size = int(request.args.get("page_size", 20))
    except (TypeError, ValueError):
        return None, None
    return page, min(max(page_size, 1), MAX_PAGE_SIZE)


def _bad_request(code: str, message: str):
    return jsonify({"error": code, "message": message, "code": 400}), 400


def _latest_subscription(user_id: int):
    return db.session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _aware(dt):
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@billing_bp.get("/benefits")
@login_required
def benefits():
    """Current plan and balances. Runs the yearly catch-up first."""
    user_id = current_user.id
    ledger.allocate_due_yearly_credits(user_id)

    usage = ledger.get_usage(user_id)
    sub = _latest_subscription(user_id)

    status = sub.status if sub else None
    period_end = _aware(sub.current_period_end) if sub else None
    if status in ACTIVE_STATUSES and period_end is not None and period_end < utcnow():
        status = "inactive_period_ended"
    active_plan_id = sub.plan_id if sub and status in ACTIVE_STATUSES else None

    allocation = usage.allocation if usage else None
    next_credit_date = None
    if isinstance(allocation, YearlyAllocation) and allocation.remaining_months > 0:
        next_credit_date = allocation.next_credit_date.isoformat()

    sub_balance = usage.subscription_credits_balance if usage else 0
    one_time_balance = usage.one_time_credits_balance if usage else 0
    return jsonify({
        "activePlanId": active_plan_id,
        "subscriptionStatus": status,
        "currentPeriodEnd": period_end.isoformat() if period_end else None,
        "nextCreditDate": next_credit_date,
        "totalAvailableCredits": sub_balance + one_time_balance,
        "subscriptionCreditsBalance": sub_balance,
        "oneTimeCreditsBalance": one_time_balance,
    })


@billing_bp.get("/credit-logs")
@login_required
def credit_logs():
    page, page_size = _pagination()
    if page is None:
        return _bad_request("invalid_pagination", "page and page_size must be integers")

    where = CreditLogEntry.user_id == current_user.id
    total = db.session.execute(select(func.count()).select_from(CreditLogEntry).where(where)).scalar_one()
    rows = db.session.execute(
        select(CreditLogEntry)
        .where(where)
        .order_by(CreditLogEntry.created_at.desc(), CreditLogEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return jsonify({"logs": [r.to_dict() for r in rows], "count": total, "page": page, "pageSize": page_size})


@billing_bp.get("/orders")
@login_required
def orders():
    page, page_size = _pagination()
    if page is None:
        return _bad_request("invalid_pagination", "page and page_size must be integers")

    where = Order.user_id == current_user.id
    total = db.session.execute(select(func.count()).select_from(Order).where(where)).scalar_one()
    rows = db.session.execute(
        select(Order)
        .where(where)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return jsonify({"orders": [o.to_dict() for o in rows], "count": total, "page": page, "pageSize": page_size})


@billing_bp.post("/credits/deduct")
@limiter.limit("30/minute")
@login_required
def deduct_credits():
    payload = request.get_json(silent=True) or {}
    amount = payload.get("amount")
    notes = (payload.get("notes") or "").strip()

    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        return _bad_request("invalid_amount", "amount must be a positive integer")
    if not notes:
        return _bad_request("notes_required", "notes are required")

    try:
        ledger.deduct(current_user.id, amount, notes=notes)
    except InsufficientCredits as exc:
        return jsonify({"error": "insufficient_credits", "message": str(exc), "available": exc.available, "code": 400}), 400

    usage = ledger.get_usage(current_user.id)
    current_app.logger.info("credits deducted user=%s amount=%s", current_user.id, amount)
    return jsonify({
        "success": True,
        "subscriptionCreditsBalance": usage.subscription_credits_balance,
        "oneTimeCreditsBalance": usage.one_time_credits_balance,
        "totalAvailableCredits": usage.total,
    })

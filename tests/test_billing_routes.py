from datetime import date, datetime, timedelta, timezone

import pytest

from payledger.billing import ledger
from payledger.billing.allocation import YearlyAllocation
from payledger.extensions import db
from payledger.models import Subscription, User


@pytest.fixture()
def login(app):
    def _login(user_id):
        with app.app_context():
            user = db.session.get(User, user_id)
            return app.test_client(user=user)
    return _login


def _subscription(user_id, plan_id, status="active", period_end=None):
    db.session.add(Subscription(
        user_id=user_id,
        plan_id=plan_id,
        stripe_subscription_id="sub_1",
        stripe_customer_id="cus_1",
        price_id="price_month",
        status=status,
        current_period_end=period_end or datetime.now(timezone.utc) + timedelta(days=10),
        meta={},
    ))
    db.session.commit()


def test_endpoints_require_login(client):
    assert client.get("/billing/benefits").status_code == 401
    assert client.get("/billing/orders").status_code == 401
    resp = client.post("/billing/credits/deduct", json={"amount": 1, "notes": "x"})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"


def test_benefits_for_new_user(make_user, login):
    uid = make_user()
    body = login(uid).get("/billing/benefits").get_json()
    assert body == {
        "activePlanId": None,
        "subscriptionStatus": None,
        "currentPeriodEnd": None,
        "nextCreditDate": None,
        "totalAvailableCredits": 0,
        "subscriptionCreditsBalance": 0,
        "oneTimeCreditsBalance": 0,
    }


def test_benefits_reports_active_plan_and_balances(app, make_user, make_plan, login):
    uid = make_user()
    pid = make_plan({"monthlyCredits": 40}, recurring_interval="month")
    with app.app_context():
        _subscription(uid, pid)
        ledger.set_subscription_balance(uid, 40)
        ledger.grant(uid, 5)

    body = login(uid).get("/billing/benefits").get_json()
    assert body["activePlanId"] == pid
    assert body["subscriptionStatus"] == "active"
    assert body["totalAvailableCredits"] == 45
    assert body["oneTimeCreditsBalance"] == 5


def test_benefits_flags_lapsed_period(app, make_user, make_plan, login):
    uid = make_user()
    pid = make_plan({}, recurring_interval="month")
    with app.app_context():
        _subscription(uid, pid, period_end=datetime.now(timezone.utc) - timedelta(days=1))

    body = login(uid).get("/billing/benefits").get_json()
    assert body["subscriptionStatus"] == "inactive_period_ended"
    assert body["activePlanId"] is None


def test_benefits_catches_up_yearly_allocation(app, make_user, login):
    uid = make_user()
    with app.app_context():
        ledger.set_subscription_balance(uid, 100, allocation=YearlyAllocation(
            monthly_credits=100, remaining_months=3,
            next_credit_date=date(2000, 1, 15), last_allocated_month="1999-12",
        ))
        ledger.deduct(uid, 60, notes="usage")

    body = login(uid).get("/billing/benefits").get_json()
    assert body["subscriptionCreditsBalance"] == 100
    assert body["nextCreditDate"] is None

    with app.app_context():
        assert ledger.get_usage(uid).allocation.remaining_months == 0
        assert ledger.verify_ledger(uid).ok


def test_deduct_spends_subscription_bucket_first(app, make_user, login):
    uid = make_user()
    with app.app_context():
        ledger.set_subscription_balance(uid, 10)
        ledger.grant(uid, 20)

    resp = login(uid).post("/billing/credits/deduct", json={"amount": 15, "notes": "export"})
    assert resp.status_code == 200
    assert resp.get_json() == {
        "success": True,
        "subscriptionCreditsBalance": 0,
        "oneTimeCreditsBalance": 15,
        "totalAvailableCredits": 15,
    }


@pytest.mark.parametrize("payload, code", [
    ({"amount": 0, "notes": "x"}, "invalid_amount"),
    ({"amount": "5", "notes": "x"}, "invalid_amount"),
    ({"amount": True, "notes": "x"}, "invalid_amount"),
    ({"amount": 5, "notes": "  "}, "notes_required"),
])
def test_deduct_rejects_bad_input(make_user, login, payload, code):
    uid = make_user()
    resp = login(uid).post("/billing/credits/deduct", json=payload)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == code


def test_deduct_insufficient_credits_changes_nothing(app, make_user, login):
    uid = make_user()
    with app.app_context():
        ledger.grant(uid, 3)

    resp = login(uid).post("/billing/credits/deduct", json={"amount": 4, "notes": "export"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "insufficient_credits"
    assert resp.get_json()["available"] == 3
    with app.app_context():
        assert ledger.get_usage(uid).one_time_credits_balance == 3


def test_credit_logs_and_orders_paginate(app, make_user, login):
    uid = make_user()
    with app.app_context():
        for _ in range(3):
            ledger.grant(uid, 1)
    client = login(uid)

    body = client.get("/billing/credit-logs?page=1&page_size=2").get_json()
    assert body["count"] == 3
    assert len(body["logs"]) == 2
    assert body["logs"][0]["oneTimeBalanceAfter"] == 3

    assert client.get("/billing/credit-logs?page=x").status_code == 400
    assert client.get("/billing/orders").get_json() == {"orders": [], "count": 0, "page": 1, "pageSize": 20}

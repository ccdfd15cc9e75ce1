import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import hashlib
import hmac
import json
import time

import pytest
from flask_login import FlaskLoginClient

from payledger import create_app
from payledger.extensions import db
from payledger.models import PricingPlan, User

WEBHOOK_SECRET = "whsec_test_x"


@pytest.fixture(scope="session")
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "MAIL_SUPPRESS_SEND": True,
        "APP_BASE_URL": "http://example.test",
        "WTF_CSRF_ENABLED": False,
        "STRIPE_SECRET_KEY": "sk_test_x",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "CREDIT_RETRY_ATTEMPTS": 3,
        "CREDIT_RETRY_BACKOFF_SECONDS": 0,
        "ADMIN_EMAIL": "ops@example.test",
        "FRAUD_WARNING_ACTIONS": ("email",),
    })
    app.test_client_class = FlaskLoginClient
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


@pytest.fixture()
def make_user(app):
    def _make(email="buyer@example.com", stripe_customer_id=None, user_id=None):
        with app.app_context():
            user = User(id=user_id, email=email, stripe_customer_id=stripe_customer_id)
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make


@pytest.fixture()
def make_plan(app):
    def _make(benefits, recurring_interval=None, stripe_price_id=None, plan_id=None, title="Plan"):
        with app.app_context():
            plan = PricingPlan(
                id=plan_id,
                card_title=title,
                stripe_price_id=stripe_price_id,
                payment_type="recurring" if recurring_interval else "one_time",
                recurring_interval=recurring_interval,
                benefits_json=benefits,
            )
            db.session.add(plan)
            db.session.commit()
            return plan.id
    return _make


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Real Stripe-Signature header: t=<ts>,v1=HMAC_SHA256(secret, "<ts>.<payload>")."""
    ts = int(timestamp if timestamp is not None else time.time())
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def event_body(event_id, event_type, obj) -> str:
    return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}})


@pytest.fixture()
def post_event(client):
    def _post(event_id, event_type, obj, signature=None):
        body = event_body(event_id, event_type, obj)
        headers = {"Stripe-Signature": signature or sign(body), "Content-Type": "application/json"}
        return client.post("/webhooks/stripe", data=body, headers=headers)
    return _post


class FakeStripe:
    """In-memory stand-in for payledger.services.stripe_gateway."""

    def __init__(self):
        self.subscriptions = {}
        self.customers = {}
        self.invoice_intents = {}
        self.charges = {}
        self.refunds = []
        self.cancelled = []
        self.calls = []

    def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve_subscription", subscription_id))
        return self.subscriptions[subscription_id]

    def retrieve_customer(self, customer_id):
        self.calls.append(("retrieve_customer", customer_id))
        return self.customers.get(customer_id, {"id": customer_id, "metadata": {}})

    def retrieve_invoice_payment_intent(self, invoice_id):
        return self.invoice_intents.get(invoice_id)

    def retrieve_charge(self, charge_id):
        return self.charges[charge_id]

    def create_fraud_refund(self, charge_id):
        self.refunds.append(charge_id)
        return {"id": f"re_{charge_id}", "charge": charge_id}

    def cancel_latest_subscription(self, customer_id):
        self.cancelled.append(customer_id)
        return f"sub_of_{customer_id}"


@pytest.fixture()
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    for name in (
        "retrieve_subscription",
        "retrieve_customer",
        "retrieve_invoice_payment_intent",
        "retrieve_charge",
        "create_fraud_refund",
        "cancel_latest_subscription",
    ):
        monkeypatch.setattr(f"payledger.services.stripe_gateway.{name}", getattr(fake, name))
    return fake


def subscription_obj(sub_id="sub_1", customer="cus_1", price_id="price_month", metadata=None,
                     status="active", start_date=None, period_start=None, period_end=None):
    start = start_date or 1700000000
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": metadata or {},
        "start_date": start,
        "cancel_at_period_end": False,
        "items": {"data": [{
            "price": {"id": price_id, "product": "prod_1"},
            "current_period_start": period_start or start,
            "current_period_end": period_end or start + 30 * 86400,
        }]},
    }

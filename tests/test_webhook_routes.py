import json

from sqlalchemy import select

from payledger.extensions import db
from payledger.models import BillingEventLog, Order

from conftest import event_body, sign


def test_invalid_signature_returns_400_and_records_nothing(app, client):
    body = event_body("evt_bad", "checkout.session.completed", {"id": "cs_1"})
    resp = client.post("/webhooks/stripe", data=body, headers={"Stripe-Signature": "t=1,v1=nope"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "invalid_signature"}

    with app.app_context():
        assert db.session.execute(select(BillingEventLog)).first() is None


def test_missing_signature_header_returns_400(client):
    body = event_body("evt_bad", "invoice.paid", {"id": "in_1"})
    resp = client.post("/webhooks/stripe", data=body)
    assert resp.status_code == 400


def test_unhandled_event_type_is_acknowledged(app, post_event):
    resp = post_event("evt_other", "customer.created", {"id": "cus_1"})
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}

    with app.app_context():
        log = db.session.execute(select(BillingEventLog)).scalar_one()
        assert log.stripe_event_id == "evt_other"
        assert log.type == "customer.created"
        assert log.processed_at is not None
        assert log.retries == 0


def test_subscription_mode_checkout_is_a_noop(app, post_event):
    resp = post_event("evt_cs_sub", "checkout.session.completed", {
        "id": "cs_sub", "mode": "subscription", "subscription": "sub_1",
        "metadata": {"userId": "1", "planId": "1", "priceId": "price_1"},
    })
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.execute(select(Order)).first() is None


def test_redelivery_bumps_retry_counter(app, post_event):
    post_event("evt_dup", "customer.created", {"id": "cus_1"})
    post_event("evt_dup", "customer.created", {"id": "cus_1"})
    with app.app_context():
        log = db.session.execute(select(BillingEventLog)).scalar_one()
        assert log.retries == 1


def test_handler_failure_returns_500_and_notes_error(app, post_event, monkeypatch):
    from payledger.billing.handlers import subscriptions

    def boom(*args, **kwargs):
        raise RuntimeError("stripe down")

    monkeypatch.setattr(subscriptions, "sync_subscription", boom)
    resp = post_event("evt_fail", "customer.subscription.updated", {"id": "sub_1", "customer": "cus_1"})
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "handler_failed"}

    with app.app_context():
        log = db.session.execute(select(BillingEventLog)).scalar_one()
        assert log.processed_at is None
        assert log.notes.startswith("handler_error:RuntimeError")


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["code"] == 404


def test_signed_body_with_malformed_data_returns_400(app, client):
    body = json.dumps({"id": "evt_bad_data", "type": "invoice.paid", "data": ["not", "an", "object"]})
    resp = client.post("/webhooks/stripe", data=body, headers={"Stripe-Signature": sign(body)})
    assert resp.status_code == 400

    with app.app_context():
        assert db.session.execute(select(BillingEventLog)).first() is None

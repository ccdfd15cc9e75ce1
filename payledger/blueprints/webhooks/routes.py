import json

from flask import current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from . import bp
from payledger.billing import dispatch, verify_event
from payledger.billing.errors import InvalidSignature
from payledger.extensions import csrf, db
from payledger.models import BillingEventLog
from payledger.observability import log_event
from payledger.utils.helpers import utcnow


def _find_log(event_id: str):
    return db.session.execute(
        select(BillingEventLog).where(BillingEventLog.stripe_event_id == event_id)
    ).scalar_one_or_none()


def _record_delivery(event, raw_bytes: bytes) -> BillingEventLog:
    """Audit row per Stripe event id; a redelivery bumps ``retries``."""
    log = _find_log(event.event_id)
    if log is None:
        log = BillingEventLog(
            stripe_event_id=event.event_id,
            type=event.event_type,
            payload=json.loads(raw_bytes.decode("utf-8")),
            retries=0,
        )
        db.session.add(log)
        try:
            db.session.commit()
            return log
        except IntegrityError:
            db.session.rollback()
            log = _find_log(event.event_id)
    log.retries = (log.retries or 0) + 1
    db.session.commit()
    return log


# ----- Stripe Webhook (payments, subscriptions, refunds) -----
@csrf.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    400 on a bad signature (nothing recorded), 500 when a handler fails so
    Stripe redelivers, 200 otherwise.
    """
    raw_bytes = request.get_data(cache=False, as_text=False)
    try:
        event = verify_event(
            raw_bytes,
            request.headers.get("Stripe-Signature"),
            current_app.config.get("STRIPE_WEBHOOK_SECRET"),
            tolerance=int(current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300)),
        )
    except InvalidSignature as exc:
        current_app.logger.info("stripe_webhook_rejected: %s", exc)
        return jsonify({"error": "invalid_signature"}), 400

    log = _record_delivery(event, raw_bytes)
    log_id = log.id

    try:
        outcome = dispatch(event)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("stripe_webhook_handler_error event=%s type=%s", event.event_id, event.event_type)
        log = db.session.get(BillingEventLog, log_id)
        log.notes = f"handler_error:{type(e).__name__}: {e}"[:255]
        db.session.commit()
        return jsonify({"error": "handler_failed"}), 500

    log = db.session.get(BillingEventLog, log_id)
    log.notes = None
    log.processed_at = utcnow()
    db.session.commit()
    log_event("webhook_processed", event_id=event.event_id, event_type=event.event_type, outcome=outcome.value)
    return jsonify({"received": True}), 200

import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urljoin

from flask import current_app, render_template
from flask_mail import Message

from payledger.extensions import db, mail
from payledger.models import EmailLog

logger = logging.getLogger(__name__)


def absolute_url(path: str) -> str:
    base = current_app.config["APP_BASE_URL"].rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def _log_structured(event: str, level: int = logging.INFO, **fields) -> None:
    """One JSON object per line; no PII beyond the recipient address."""
    current_app.logger.log(level, json.dumps({"event": event, **fields}, default=str))


def send_email(to_email: str, subject: str, template: str, context: Optional[Dict[str, Any]] = None,
               user_id: Optional[int] = None) -> bool:
    """
    Render templates/email/<template>.html/.txt and send through Flask-Mail.
    Every attempt leaves an EmailLog row. Never raises: returns True when sent.
    """
    ctx = dict(context or {})
    to_email = (to_email or "").strip().lower()
    if not to_email:
        _log_structured("mail_send", logging.WARNING, template=template, outcome="no_recipient")
        return False

    elog = None
    start = time.perf_counter()
    try:
        html_body = render_template(f"email/{template}.html", **ctx)
        text_body = render_template(f"email/{template}.txt", **ctx)
        msg = Message(subject=subject, recipients=[to_email])
        msg.body = text_body
        msg.html = html_body

        elog = EmailLog(user_id=user_id, to_email=to_email, template=template, subject=subject,
                        status="queued", meta={})
        db.session.add(elog)
        db.session.commit()

        mail.send(msg)
        elog.status = "sent"
        db.session.commit()
        _log_structured("mail_send", template=template, to=to_email, outcome="sent",
                        latency_ms=int((time.perf_counter() - start) * 1000))
        return True
    except Exception as ex:
        # Notification failures must never fail the caller
        db.session.rollback()
        try:
            if elog is not None and elog.id is not None:
                elog.status = "failed"
                elog.meta = {"error": str(ex)}
            else:
                db.session.add(EmailLog(user_id=user_id, to_email=to_email, template=template,
                                        subject=subject, status="failed", meta={"error": str(ex)}))
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Could not record failed email to %s", to_email)
        _log_structured("mail_send", logging.WARNING, template=template, to=to_email,
                        outcome="error", latency_ms=int((time.perf_counter() - start) * 1000), error=str(ex))
        return False

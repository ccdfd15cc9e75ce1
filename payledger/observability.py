import os
import json
import logging
from logging.config import dictConfig

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

_events_logger = logging.getLogger("payledger.events")


def init_logging(app):
    """Structured logs (JSON) in staging/prod; keep default console in dev/tests."""
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    level = app.config.get("LOG_LEVEL", "INFO")
    if app_env in ("staging", "production"):
        fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
        dictConfig({
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": fmt}},
            "handlers": {"wsgi": {"class": "logging.StreamHandler", "formatter": "json"}},
            "root": {"level": level, "handlers": ["wsgi"]},
        })
    else:
        logging.getLogger("payledger").setLevel(level)


def init_sentry(app):
    """Wire Sentry if DSN present; no-op otherwise."""
    dsn = app.config.get("SENTRY_DSN") or os.getenv("SENTRY_DSN")
    if not dsn:
        return
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
        profiles_sample_rate=float(os.getenv("SENTRY_PROFILES", "0.0")),
        environment=os.getenv("APP_ENV", "development"),
    )


def log_event(event: str, level: int = logging.INFO, **fields) -> None:
    """
    Business event as one JSON object per line, e.g.
    {"event": "credit_grant", "user_id": 7, "amount": 500}
    """
    payload = {"event": event, **fields}
    _events_logger.log(level, json.dumps(payload, default=str, sort_keys=True))

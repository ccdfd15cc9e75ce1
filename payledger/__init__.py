import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)

from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter, mail
from .security import init_security
from .observability import init_logging, init_sentry


def create_app(config_overrides=None):
    app = Flask(__name__, template_folder="templates")

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    app.config["APP_ENV"] = app_env
    if config_overrides:
        app.config.update(config_overrides)

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Enforce hard requirements at startup (not at import time)
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")

    init_logging(app)
    init_sentry(app)

    # HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(os.path.dirname(app.root_path), "migrations"))
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # Models register their tables and the Flask-Login user loader on import
    from . import models  # noqa: F401

    from .blueprints.webhooks import bp as webhooks_bp
    from .blueprints.billing.routes import billing_bp

    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")
    app.register_blueprint(billing_bp, url_prefix="/billing")

    @limiter.exempt
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    # Error handlers: JSON everywhere
    @app.errorhandler(HTTPException)
    def http_error(e):
        payload = {"error": (e.name or "error").lower().replace(" ", "_"), "code": e.code}
        headers = {}
        retry_after = getattr(e, "retry_after", None)
        if e.code == 429:
            payload["error"] = "rate_limited"
            if retry_after is not None:
                headers["Retry-After"] = str(int(retry_after))
                payload["retry_after"] = int(retry_after)
        return jsonify(payload), e.code, headers

    @app.errorhandler(500)
    def server_error(e):
        app.logger.error("unhandled_error path=%s", request.path)
        return jsonify({"error": "internal_server_error", "code": 500}), 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify({"error": "csrf_failed", "message": e.description, "code": 400}), 400

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("Stripe secret key missing; billing features will not work")

    return app

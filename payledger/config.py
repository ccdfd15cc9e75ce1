import os


def _csv(value: str) -> tuple:
    return tuple(part.strip().lower() for part in (value or "").split(",") if part.strip())


class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY

    # Database (env in prod; dev/test may use default)
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / observability
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    SENTRY_DSN = os.environ.get("SENTRY_DSN")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # --- Mail ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = (os.getenv("MAIL_USE_TLS", "true").lower() == "true")
    MAIL_USE_SSL = (os.getenv("MAIL_USE_SSL", "false").lower() == "true")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "Payledger <no-reply@local.test>")
    MAIL_SUPPRESS_SEND = (os.getenv("MAIL_SUPPRESS_SEND", "false").lower() == "true")

    # Operator alerts (credit grant failures, fraud warnings)
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
    ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")

    # Used for absolute links in emails (must be https in prod)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")
    CUSTOMER_PORTAL_PATH = os.getenv("CUSTOMER_PORTAL_PATH", "/billing")

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "usd").lower()

    # email | refund | email,refund
    FRAUD_WARNING_ACTIONS = _csv(os.getenv("STRIPE_RADAR_EARLY_FRAUD_WARNING_TYPE", "email"))

    # --- Credit ledger retry policy (linear backoff: attempt * seconds) ---
    CREDIT_RETRY_ATTEMPTS = int(os.getenv("CREDIT_RETRY_ATTEMPTS", "3"))
    CREDIT_RETRY_BACKOFF_SECONDS = float(os.getenv("CREDIT_RETRY_BACKOFF_SECONDS", "1.0"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
    MAIL_SUPPRESS_SEND = False


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True
    WTF_CSRF_ENABLED = False
    CREDIT_RETRY_BACKOFF_SECONDS = 0.0
    STRIPE_SECRET_KEY = "sk_test_x"
    STRIPE_WEBHOOK_SECRET = "whsec_test_x"
    ADMIN_EMAIL = "ops@example.test"


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": ProductionConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)

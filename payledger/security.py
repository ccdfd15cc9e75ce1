from flask_talisman import Talisman


def init_security(app):
    """
    Production/staging security headers. The service only speaks JSON, so the
    CSP denies everything but same-origin.
    """
    csp = {
        "default-src": ["'none'"],
        "frame-ancestors": ["'none'"],
        "base-uri": ["'none'"],
        "form-action": ["'none'"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="no-referrer",
    )

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Enabled per app through RATELIMIT_ENABLED
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    strategy="fixed-window",
)


def login_rate_limit() -> str:
    return current_app.config.get("LOGIN_RATE_LIMIT", "10 per minute")

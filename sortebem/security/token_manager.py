# sortebem/security/token_manager.py
from datetime import timedelta
from functools import wraps
from flask import current_app, Flask, jsonify
from flask_jwt_extended import create_access_token, get_jwt, verify_jwt_in_request

from sortebem.errors import ConfigurationError, report_configuration_error

# Short-lived signed sessions for the site admin and for each raffle admin.
# The role and raffle scope travel as claims instead of ambient session state.
# Tokens are never issued or accepted without a JWT_SECRET_KEY of at least
# MIN_SECRET_LENGTH characters.

SITE_ADMIN = "site_admin"
RAFFLE_ADMIN = "raffle_admin"
MIN_SECRET_LENGTH = 32


def jwt_secret_configured(app: Flask = None) -> bool:
    app = app or current_app
    secret = app.config.get("JWT_SECRET_KEY") or ""
    return len(secret) >= MIN_SECRET_LENGTH


def _require_secret():
    if not jwt_secret_configured():
        raise report_configuration_error(ConfigurationError(
            "JWT_SECRET_KEY", f"JWT_SECRET_KEY must be set to at least {MIN_SECRET_LENGTH} characters"))


class TokenManager:
    def __init__(self, app: Flask = None):
        if app:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.config.setdefault("JWT_ACCESS_TOKEN_EXPIRES", timedelta(minutes=30))

    def generate_token(self, identity: str, role: str, expires_in: int = 1800) -> str:
        _require_secret()
        expires_delta = timedelta(seconds=expires_in)
        return create_access_token(identity=identity, additional_claims={"role": role},
                                   expires_delta=expires_delta)

    def generate_site_admin_token(self, email: str, expires_in: int = 1800) -> str:
        return self.generate_token(email, SITE_ADMIN, expires_in)

    def generate_raffle_admin_token(self, raffle_id: str, expires_in: int = 1800) -> str:
        return self.generate_token(raffle_id, RAFFLE_ADMIN, expires_in)


def _denied():
    return jsonify({"error": "Access denied"}), 403


def require_site_admin(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        _require_secret()
        verify_jwt_in_request()
        if get_jwt().get("role") != SITE_ADMIN:
            return _denied()
        return func(*args, **kwargs)
    return wrapper


def require_raffle_admin(func):
    """Allow the site admin, or the raffle admin whose token matches raffle_id."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        _require_secret()
        verify_jwt_in_request()
        claims = get_jwt()
        role = claims.get("role")
        if role == SITE_ADMIN:
            return func(*args, **kwargs)
        if role == RAFFLE_ADMIN and claims.get("sub") == kwargs.get("raffle_id"):
            return func(*args, **kwargs)
        return _denied()
    return wrapper

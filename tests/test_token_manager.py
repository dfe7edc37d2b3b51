# tests/test_token_manager.py
import pytest
import time
from flask import Flask, jsonify
from flask_jwt_extended import JWTManager, decode_token
from sortebem.errors import ConfigurationError
from sortebem.security.token_manager import (
    RAFFLE_ADMIN, TokenManager, jwt_secret_configured, require_raffle_admin, require_site_admin,
)

@pytest.fixture
def app():
    app = Flask(__name__)
    app.config['TESTING'] = True
    app.config['JWT_SECRET_KEY'] = "test_secret_with_enough_length_for_hs256"
    JWTManager(app)

    @app.errorhandler(ConfigurationError)
    def unavailable(e):
        return jsonify({"error": "Service temporarily unavailable"}), 503

    @app.route("/raffles/<raffle_id>/admin")
    @require_raffle_admin
    def raffle_admin(raffle_id):
        return jsonify({"raffle_id": raffle_id})

    @app.route("/site-admin")
    @require_site_admin
    def site_admin():
        return jsonify({"ok": True})

    return app

@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client

@pytest.fixture
def token_manager(app):
    return TokenManager(app)

def auth(token):
    return {"Authorization": f"Bearer {token}"}

def test_generated_token_carries_role_and_identity(app, token_manager):
    with app.app_context():
        token = token_manager.generate_raffle_admin_token("raffle-1", expires_in=5)
        assert isinstance(token, str)
        claims = decode_token(token)
    assert claims["sub"] == "raffle-1"
    assert claims["role"] == RAFFLE_ADMIN

def test_expired_token_rejected(app, client, token_manager):
    with app.app_context():
        token = token_manager.generate_site_admin_token("admin@example.com", expires_in=1)
    assert client.get("/site-admin", headers=auth(token)).status_code == 200
    time.sleep(2)
    assert client.get("/site-admin", headers=auth(token)).status_code == 401

def test_raffle_admin_scoped_to_own_raffle(app, client, token_manager):
    with app.app_context():
        token = token_manager.generate_raffle_admin_token("raffle-1")
    assert client.get("/raffles/raffle-1/admin", headers=auth(token)).status_code == 200
    assert client.get("/raffles/raffle-2/admin", headers=auth(token)).status_code == 403
    assert client.get("/site-admin", headers=auth(token)).status_code == 403

def test_site_admin_reaches_every_raffle(app, client, token_manager):
    with app.app_context():
        token = token_manager.generate_site_admin_token("admin@example.com")
    assert client.get("/raffles/raffle-1/admin", headers=auth(token)).status_code == 200
    assert client.get("/site-admin", headers=auth(token)).status_code == 200

def test_missing_token_rejected(client):
    assert client.get("/site-admin").status_code == 401

def test_tampered_token_rejected(app, client, token_manager):
    with app.app_context():
        token = token_manager.generate_site_admin_token("admin@example.com")
    head, signature = token.rsplit(".", 1)
    forged = head + "." + ("A" if signature[0] != "A" else "B") + signature[1:]
    assert client.get("/site-admin", headers=auth(forged)).status_code == 401

@pytest.mark.parametrize("secret", ["", "short-secret"])
def test_weak_secret_refuses_to_issue_tokens(app, token_manager, secret):
    app.config['JWT_SECRET_KEY'] = secret
    assert jwt_secret_configured(app) is False
    with app.app_context():
        with pytest.raises(ConfigurationError):
            token_manager.generate_site_admin_token("admin@example.com")

def test_weak_secret_refuses_protected_routes(app, client, token_manager):
    with app.app_context():
        token = token_manager.generate_site_admin_token("admin@example.com")
    app.config['JWT_SECRET_KEY'] = "short-secret"
    assert client.get("/site-admin", headers=auth(token)).status_code == 503

# sortebem/__init__.py

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
import logging
import os
from decimal import Decimal
from flask_jwt_extended import JWTManager
from datetime import timedelta


logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO'),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', '')
# no default: sessions are refused until a real secret is configured
app.config['JWT_SECRET_KEY'] = os.environ.get('JWT_SECRET_KEY', '')
app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(minutes=int(os.environ.get('SESSION_MINUTES', '30')))
app.config['JWT_TOKEN_LOCATION'] = ['headers']  # Bearer tokens

jwt = JWTManager(app)

@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    return jsonify({"error": "Session expired"}), 401

@jwt.unauthorized_loader
def missing_token_callback(reason):
    return jsonify({"error": "Authentication required"}), 401

@jwt.invalid_token_loader
def invalid_token_callback(reason):
    return jsonify({"error": "Authentication required"}), 401

app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///sortebem.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# Secrets and raffle settings
app.config['ENCRYPTION_MASTER_KEY'] = os.environ.get('ENCRYPTION_MASTER_KEY', '')
app.config['WEBHOOK_SECRET'] = os.environ.get('WEBHOOK_SECRET', '')
app.config['ABACATEPAY_API_KEY'] = os.environ.get('ABACATEPAY_API_KEY', '')
app.config['ABACATEPAY_BASE_URL'] = os.environ.get('ABACATEPAY_BASE_URL', 'https://api.abacatepay.com/v1')
app.config['ACTIVATION_FEE'] = Decimal(os.environ.get('ACTIVATION_FEE', '20.00'))
app.config['PAYMENT_POLL_INTERVAL'] = float(os.environ.get('PAYMENT_POLL_INTERVAL', '5'))
app.config['LOGIN_MAX_ATTEMPTS'] = int(os.environ.get('LOGIN_MAX_ATTEMPTS', '5'))
app.config['LOGIN_WINDOW_SECONDS'] = int(os.environ.get('LOGIN_WINDOW_SECONDS', '60'))
app.config['PASSWORD_HASH_TIME_COST'] = int(os.environ.get('PASSWORD_HASH_TIME_COST', '3'))
app.config['PASSWORD_HASH_MEMORY_COST'] = int(os.environ.get('PASSWORD_HASH_MEMORY_COST', '65536'))
app.config['SITE_ADMIN_EMAIL'] = os.environ.get('SITE_ADMIN_EMAIL', '')
app.config['SITE_ADMIN_PASSWORD_HASH'] = os.environ.get('SITE_ADMIN_PASSWORD_HASH', '')
app.config['PUBLIC_BASE_URL'] = os.environ.get('PUBLIC_BASE_URL', '')
app.config['POLL_ON_STARTUP'] = os.environ.get('POLL_ON_STARTUP', '0') == '1'

# Fix proxy headers for HTTPS
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

# Initialize extensions
db = SQLAlchemy(app)  # Database ORM
migrate = Migrate(app, db)  # DB migrations

app.config['RATELIMIT_ENABLED'] = os.environ.get('RATELIMIT_ENABLED', '1') == '1'
limiter = Limiter(key_func=get_remote_address, default_limits=["2000/hour"],
                  storage_uri=os.environ.get('RATELIMIT_STORAGE_URI', 'memory://'))
limiter.init_app(app)


# Ensure model modules are imported so SQLAlchemy metadata is populated
# This makes models discoverable by Flask-Migrate / Alembic when running
# `flask db migrate`.
from sortebem.database import models  # noqa: F401

from sortebem import routes  # noqa: E402,F401  Import Flask routes

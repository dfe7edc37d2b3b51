# sortebem/operations/health_monitor.py
# Liveness/readiness checks (database, secret material, payment polling)

from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError


def _check_db(db) -> Dict:
    try:
        db.session.execute(text("SELECT 1"))
        return {"ok": True, "detail": "database reachable"}
    except SQLAlchemyError as e:
        db.session.rollback()
        return {"ok": False, "error": type(e).__name__}


def _check_secrets(encryption_service, webhook_verifier, jwt_secret_ok) -> Dict:
    encryption_ok = encryption_service.is_configured()
    return {
        "ok": encryption_ok and jwt_secret_ok,
        "encryption_key": encryption_ok,
        "jwt_secret": jwt_secret_ok,
        "webhook_secret": bool(webhook_verifier.secret),
    }


def _check_gateway(gateway, poller) -> Dict:
    # The gateway is optional; without it payments are confirmed manually.
    return {
        "ok": True,
        "gateway_enabled": gateway.enabled,
        "active_polls": len(poller.active_payment_ids()),
    }


def check_health(db, encryption_service, webhook_verifier, gateway, poller, jwt_secret_ok=True) -> Dict:
    """Aggregate overall system health."""
    database = _check_db(db)
    secrets = _check_secrets(encryption_service, webhook_verifier, jwt_secret_ok)
    payments = _check_gateway(gateway, poller)
    overall = database["ok"] and secrets["ok"]
    return {"db": database, "secrets": secrets, "payments": payments, "overall_ok": overall}


def check_readiness(db) -> Dict:
    database = _check_db(db)
    return {"db": database, "overall_ok": database["ok"]}

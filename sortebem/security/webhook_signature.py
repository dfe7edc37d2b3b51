# sortebem/security/webhook_signature.py

import base64
import binascii
import hashlib
import hmac
import logging
import os

logger = logging.getLogger(__name__)

# HMAC-SHA256 verification of payment gateway webhooks. The signature header
# carries the base64-encoded digest of the raw request body.


class WebhookSignatureVerifier:
    def __init__(self, secret=None):
        if secret is None:
            secret = os.environ.get('WEBHOOK_SECRET', '')
        self.secret = secret.encode() if isinstance(secret, str) else (secret or b'')

    def sign(self, payload: bytes) -> str:
        if isinstance(payload, str):
            payload = payload.encode()
        digest = hmac.new(self.secret, payload, hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def verify(self, payload: bytes, signature: str) -> bool:
        if not self.secret:
            logger.warning("Webhook rejected: WEBHOOK_SECRET is not configured")
            return False
        if not signature:
            return False
        if isinstance(payload, str):
            payload = payload.encode()
        try:
            provided = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        expected = hmac.new(self.secret, payload, hashlib.sha256).digest()
        return hmac.compare_digest(expected, provided)

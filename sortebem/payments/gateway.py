# sortebem/payments/gateway.py
"""HTTP client for the PIX billing gateway (AbacatePay API).

The gateway is optional: without an API key, or when it fails, create_charge
returns None and check_status returns UNKNOWN, and callers fall back to
manual confirmation. Nothing here raises on network or API errors.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.abacatepay.com/v1"
DEV_KEY_PREFIX = "abc_dev_"


class GatewayStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value):
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self):
        return self in (GatewayStatus.PAID, GatewayStatus.EXPIRED, GatewayStatus.REFUNDED)


@dataclass
class Payer:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None


@dataclass
class GatewayCharge:
    charge_id: str
    url: Optional[str] = None
    pix_code: Optional[str] = None
    amount_cents: Optional[int] = None


class PixGatewayClient:
    def __init__(self, api_key=None, base_url=None, timeout=10, session=None):
        if api_key is None:
            api_key = os.environ.get('ABACATEPAY_API_KEY', '')
        self.api_key = api_key
        self.base_url = (base_url or os.environ.get('ABACATEPAY_BASE_URL') or DEFAULT_BASE_URL).rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.dev_mode = bool(api_key) and api_key.startswith(DEV_KEY_PREFIX)
        if self.dev_mode:
            logger.info("PIX gateway running in development mode (test key detected)")

    @property
    def enabled(self):
        return bool(self.api_key)

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

    def create_charge(self, amount_cents: int, payer: Payer, description: str,
                      return_url: Optional[str] = None) -> Optional[GatewayCharge]:
        """Create a one-time PIX billing. Returns None when the gateway is unavailable."""
        if not self.enabled:
            logger.warning("PIX gateway API key missing; charge not created")
            return None

        payload = {
            "frequency": "ONE_TIME",
            "methods": ["PIX"],
            "products": [{
                "externalId": "raffle-activation-fee",
                "name": "Taxa de Ativação - Sorte do Bem",
                "description": description,
                "quantity": 1,
                "price": amount_cents,
            }],
            "customer": {
                "name": payer.name,
                "email": payer.email,
                "taxId": payer.tax_id,
                "phone": payer.phone,
            },
            "returnUrl": return_url,
        }
        if self.dev_mode:
            logger.info("Creating PIX charge of %d cents for %s", amount_cents, payer.name)

        try:
            response = self.session.post(f"{self.base_url}/billing/create", json=payload,
                                         headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("PIX gateway unreachable while creating charge: %s", e)
            return None

        if response.status_code >= 400:
            logger.error("PIX gateway refused charge (HTTP %s): %s", response.status_code, response.text[:300])
            return None

        try:
            data = response.json()['data']
            charge = GatewayCharge(
                charge_id=data['id'],
                url=data.get('url'),
                pix_code=(data.get('pix') or {}).get('code'),
                amount_cents=data.get('amount'),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Unexpected PIX gateway response: %s", e)
            return None

        if self.dev_mode:
            logger.info("PIX charge created: %s", charge.charge_id)
        return charge

    def check_status(self, charge_id: str) -> GatewayStatus:
        if not self.enabled or not charge_id:
            return GatewayStatus.UNKNOWN
        try:
            response = self.session.get(f"{self.base_url}/billing/list", params={'id': charge_id},
                                        headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("PIX gateway unreachable while checking %s: %s", charge_id, e)
            return GatewayStatus.UNKNOWN

        if response.status_code >= 400:
            logger.warning("Failed to check charge %s: HTTP %s", charge_id, response.status_code)
            return GatewayStatus.UNKNOWN

        try:
            bills = response.json().get('data') or []
        except (ValueError, AttributeError):
            return GatewayStatus.UNKNOWN
        bill = next((b for b in bills if isinstance(b, dict) and b.get('id') == charge_id), None)
        status = GatewayStatus.parse(bill.get('status')) if bill else GatewayStatus.UNKNOWN

        if self.dev_mode and status is GatewayStatus.PAID:
            logger.info("PIX charge %s paid", charge_id)
        return status

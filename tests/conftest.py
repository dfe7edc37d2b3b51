import os

# Settings must be in place before the sortebem package (and its Flask app) is imported.
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('ENCRYPTION_MASTER_KEY', 'k' * 32)
os.environ.setdefault('WEBHOOK_SECRET', 'test-webhook-secret')
os.environ.setdefault('JWT_SECRET_KEY', 'test-jwt-secret-with-enough-length-123')
os.environ.setdefault('PASSWORD_HASH_TIME_COST', '1')
os.environ.setdefault('PASSWORD_HASH_MEMORY_COST', '1024')
os.environ.setdefault('RATELIMIT_ENABLED', '0')
os.environ.setdefault('ABACATEPAY_API_KEY', '')

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sortebem.audit.audit_logger import AuditLogger
from sortebem.credentials.vault import CredentialVault
from sortebem.database.document_store import InMemoryDocumentStore
from sortebem.database.locks import KeyedLock
from sortebem.encryption.data_encryption import DataEncryptionService
from sortebem.encryption.password_hashing import PasswordHashingService
from sortebem.errors import StorageError
from sortebem.payments.ledger import PaymentLedger
from sortebem.raffles.store import RaffleStore
from sortebem.schemas import RaffleCreate
from sortebem.security.input_validator import InputValidator
from sortebem.security.intrusion_detection import LoginRateLimiter


class FakeGateway:
    """Stands in for PixGatewayClient; statuses are fed per charge id."""

    def __init__(self, charge=None, enabled=True):
        self.charge = charge
        self.enabled = enabled
        self.statuses = {}
        self.created = []
        self.checked = []

    def create_charge(self, amount_cents, payer, description, return_url=None):
        self.created.append((amount_cents, payer, description, return_url))
        return self.charge

    def check_status(self, charge_id):
        from sortebem.payments.gateway import GatewayStatus
        self.checked.append(charge_id)
        return self.statuses.get(charge_id, GatewayStatus.PENDING)


def raffle_input(**overrides):
    data = {
        'name': 'Rifa Beneficente',
        'description': 'Arrecadação para o abrigo',
        'ticket_price': Decimal('10.00'),
        'total_tickets': 10,
        'draw_date': datetime.now(timezone.utc) + timedelta(days=30),
        'responsible_name': 'Maria Souza',
        'responsible_phone': '11987654321',
        'pix_key_type': 'email',
        'pix_key': 'maria@example.com',
        'admin_email': 'a@b.com',
        'admin_password': 'segredo123',
        'prizes': [{'description': 'Cesta de chocolates'}],
    }
    data.update(overrides)
    return RaffleCreate.model_validate(data)


def fail_puts(monkeypatch, store, collection):
    """Make every later put into one collection raise StorageError."""
    original = store.put

    def put(target, doc):
        if target == collection:
            raise StorageError(f"{collection} unavailable")
        return original(target, doc)

    monkeypatch.setattr(store, 'put', put)


@pytest.fixture
def validator():
    return InputValidator()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def audit_logger(store, validator):
    return AuditLogger(store, validator)


@pytest.fixture
def password_service():
    return PasswordHashingService(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def encryption_service():
    return DataEncryptionService(master_key='k' * 32)


@pytest.fixture
def rate_limiter():
    return LoginRateLimiter(max_attempts=5, window_seconds=60)


@pytest.fixture
def vault(store, password_service, encryption_service, rate_limiter, audit_logger, validator, locks):
    return CredentialVault(store, password_service, encryption_service, rate_limiter,
                           audit_logger, validator, locks)


@pytest.fixture
def ledger(store, validator, audit_logger, locks):
    return PaymentLedger(store, validator, audit_logger, locks)


@pytest.fixture
def raffle_store(store, ledger, validator, audit_logger, locks):
    return RaffleStore(store, ledger, validator, audit_logger, locks)


@pytest.fixture
def new_raffle(raffle_store):
    """A freshly created raffle, still awaiting its activation fee."""
    result = raffle_store.create(raffle_input(), Decimal('20.00'))
    assert result.ok
    return result.value


@pytest.fixture
def active_raffle(raffle_store, ledger, new_raffle):
    """A 10-ticket raffle whose activation fee has been confirmed."""
    assert ledger.confirm(new_raffle.payment_id).ok
    return raffle_store.get(new_raffle.id)

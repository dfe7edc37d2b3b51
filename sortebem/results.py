# sortebem/results.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Typed outcomes returned by the raffle, payment and credential services.
# Validation, security and integration failures travel as values; only
# configuration problems are raised.


class Failure(Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    TICKETS_UNAVAILABLE = "tickets_unavailable"
    RAFFLE_NOT_ORDERABLE = "raffle_not_orderable"
    NO_SOLD_TICKETS = "no_sold_tickets"
    ALREADY_DRAWN = "already_drawn"
    ALREADY_CONFIRMED = "already_confirmed"
    INVALID_TRANSITION = "invalid_transition"
    WEAK_PASSWORD = "weak_password"
    UNDECRYPTABLE = "undecryptable"
    STORAGE_ERROR = "storage_error"
    CRYPTO_ERROR = "crypto_error"


@dataclass
class OperationResult:
    ok: bool
    value: Any = None
    error: Optional[Failure] = None
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, value=None, **details):
        return cls(ok=True, value=value, details=details)

    @classmethod
    def failure(cls, error: Failure, value=None, **details):
        return cls(ok=False, value=value, error=error, details=details)

    def __bool__(self):
        return self.ok

# sortebem/schemas.py

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Document shapes for every collection kept in the document store.


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RaffleStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_PAYMENT = "awaiting_payment"
    ACTIVE = "active"
    FINISHED = "finished"


class TicketStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    MANUAL = "manual"
    GATEWAY = "gateway"


class PixKeyType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    CPF = "cpf"
    RANDOM = "random"


class Prize(BaseModel):
    id: str
    description: str
    photo: str = ""


class Ticket(BaseModel):
    number: int = Field(ge=1)
    status: TicketStatus = TicketStatus.AVAILABLE
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None

    @model_validator(mode="after")
    def _buyer_matches_status(self):
        if self.status == TicketStatus.AVAILABLE and (self.buyer_name or self.buyer_phone):
            raise ValueError(f"Available ticket {self.number} cannot carry buyer data")
        return self


class Raffle(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str
    description: str = ""
    ticket_price: Decimal = Field(gt=0)
    pix_key_type: PixKeyType = PixKeyType.RANDOM
    pix_key: str = ""
    responsible_name: str = ""
    responsible_phone: str = ""
    prizes: List[Prize] = Field(default_factory=list)
    tickets: List[Ticket]
    created_at: datetime = Field(default_factory=utcnow)
    draw_date: Optional[datetime] = None
    draw_completion_date: Optional[datetime] = None
    winner_ticket_number: Optional[int] = None
    status: RaffleStatus = RaffleStatus.AWAITING_PAYMENT
    payment_id: Optional[str] = None

    @field_validator("tickets")
    @classmethod
    def _tickets_are_sequential(cls, tickets):
        numbers = [t.number for t in tickets]
        if numbers != list(range(1, len(tickets) + 1)):
            raise ValueError("Tickets must be numbered 1..N exactly once, in order")
        return tickets

    @property
    def total_tickets(self) -> int:
        return len(self.tickets)

    def ticket(self, number: int) -> Optional[Ticket]:
        if 1 <= number <= len(self.tickets):
            return self.tickets[number - 1]
        return None

    def sold_tickets(self) -> List[Ticket]:
        return [t for t in self.tickets if t.status == TicketStatus.SOLD]

    def is_public(self) -> bool:
        return self.status in (RaffleStatus.ACTIVE, RaffleStatus.FINISHED)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class Payment(BaseModel):
    id: str
    raffle_id: str
    amount: Decimal = Field(gt=0)
    status: PaymentStatus = PaymentStatus.PENDING
    reference: str
    created_at: datetime = Field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    notes: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.MANUAL
    gateway_charge_id: Optional[str] = None
    gateway_url: Optional[str] = None
    gateway_pix_code: Optional[str] = None

    @property
    def amount_cents(self) -> int:
        return int((self.amount * 100).to_integral_value())

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class PaymentProof(BaseModel):
    payment_id: str
    image_ref: str
    submitted_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json")
        doc["id"] = self.payment_id
        return doc


class AdminCredential(BaseModel):
    raffle_id: str
    password_hash: str
    encrypted_email: str
    iv: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json")
        doc["id"] = self.raffle_id
        return doc


class AuditEntry(BaseModel):
    id: str
    action: str
    raffle_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    success: bool
    timestamp: datetime = Field(default_factory=utcnow)
    previous_hash: Optional[str] = None
    hash: Optional[str] = None


class PrizeInput(BaseModel):
    description: str
    photo: str = ""


class RaffleCreate(BaseModel):
    """Organizer input for a new raffle; validated before anything is written."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    ticket_price: Decimal = Field(ge=1)
    total_tickets: int = Field(ge=1, le=100000)
    draw_date: datetime
    responsible_name: str = Field(min_length=1)
    responsible_phone: str = ""
    pix_key_type: PixKeyType
    pix_key: str = Field(min_length=1)
    admin_email: str
    admin_password: str = Field(min_length=1)
    prizes: List[PrizeInput] = Field(min_length=1)

    @field_validator("prizes")
    @classmethod
    def _prizes_have_descriptions(cls, prizes):
        if not all(p.description.strip() for p in prizes):
            raise ValueError("Every prize needs a description")
        return prizes


class RaffleUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    draw_date: Optional[datetime] = None
    ticket_price: Optional[Decimal] = Field(default=None, gt=0)
    responsible_name: Optional[str] = None
    responsible_phone: Optional[str] = None
    pix_key_type: Optional[PixKeyType] = None
    pix_key: Optional[str] = None
    prizes: Optional[List[Prize]] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

# sortebem/raffles/store.py
"""Raffle metadata, ticket pool and lifecycle.

Ticket state only moves forward: available -> reserved -> sold. Raffle
state follows draft -> awaiting_payment -> active -> finished, where the
step to active is driven by the activation-fee payment and the step to
finished by the draw.

Every mutation reads the raffle from the store, changes it and writes it back
while holding the raffle's lock, so concurrent reservations for the same
numbers cannot both succeed and the draw always sees the latest confirmed
tickets.
"""

import logging
import random
import uuid
from datetime import datetime, timezone

from pydantic import ValidationError

from sortebem.database.document_store import (
    CREDENTIALS, PAYMENTS, PROOFS, RAFFLES, delete_op, put_op,
)
from sortebem.database.locks import KeyedLock
from sortebem.errors import StorageError
from sortebem.results import Failure, OperationResult
from sortebem.schemas import (
    PaymentStatus, Prize, Raffle, RaffleStatus, Ticket, TicketStatus,
)

logger = logging.getLogger(__name__)


class RaffleStore:
    def __init__(self, store, ledger, validator, audit_logger=None, locks=None, rng=None):
        self.store = store
        self.ledger = ledger
        self.validator = validator
        self.audit = audit_logger
        self.locks = locks or KeyedLock()
        self.rng = rng or random.SystemRandom()
        self._deletion_listeners = []
        ledger.add_confirmation_listener(self._on_payment_confirmed)

    def add_deletion_listener(self, listener):
        self._deletion_listeners.append(listener)

    def _lock_key(self, raffle_id):
        return f"raffle:{raffle_id}"

    def _audit(self, action, raffle_id, details=None, success=True):
        if self.audit is not None:
            self.audit.log_action(action, raffle_id, details or {}, success)

    def _save(self, raffle):
        self.store.put(RAFFLES, raffle.to_document())

    # -- reads ---------------------------------------------------------------

    def get(self, raffle_id):
        doc = self.store.get(RAFFLES, raffle_id)
        return Raffle.model_validate(doc) if doc is not None else None

    def list_all(self):
        raffles = [Raffle.model_validate(d) for d in self.store.get_all(RAFFLES)]
        return sorted(raffles, key=lambda r: r.created_at, reverse=True)

    def list_public(self):
        """Raffles buyers may see: awaiting-payment and draft raffles stay hidden."""
        return [r for r in self.list_all() if r.is_public()]

    # -- creation ------------------------------------------------------------

    def create(self, data, activation_fee):
        """Create the raffle and its pending activation-fee payment in one write.

        ``data`` is a validated RaffleCreate; admin credentials are not part of
        the raffle document and are handled by the caller.
        """
        raffle_id = uuid.uuid4().hex[:12]
        payment = self.ledger.new_activation_payment(raffle_id, activation_fee)
        sanitize = self.validator.sanitize_string
        raffle = Raffle(
            id=raffle_id,
            name=sanitize(data.name, max_length=120),
            description=self.validator.sanitize_rich_text(data.description),
            ticket_price=data.ticket_price,
            pix_key_type=data.pix_key_type,
            pix_key=sanitize(data.pix_key, max_length=140),
            responsible_name=sanitize(data.responsible_name, max_length=120),
            responsible_phone=sanitize(data.responsible_phone, max_length=30),
            prizes=[
                Prize(id=f"prize-{i}", description=sanitize(p.description), photo=sanitize(p.photo, max_length=2048))
                for i, p in enumerate(data.prizes)
            ],
            tickets=[Ticket(number=n) for n in range(1, data.total_tickets + 1)],
            draw_date=data.draw_date,
            status=RaffleStatus.AWAITING_PAYMENT,
            payment_id=payment.id,
        )
        try:
            self.store.apply([
                put_op(RAFFLES, raffle.to_document()),
                put_op(PAYMENTS, payment.to_document()),
            ])
        except StorageError as e:
            logger.error("Creating raffle %s failed: %s", raffle_id, e)
            return OperationResult.failure(Failure.STORAGE_ERROR)
        logger.info("Raffle %s created with %d tickets", raffle_id, raffle.total_tickets)
        self._audit('RAFFLE_CREATED', raffle_id, {'total_tickets': raffle.total_tickets})
        return OperationResult.success(raffle, payment=payment)

    # -- tickets ---------------------------------------------------------------

    def reserve(self, raffle_id, ticket_numbers, buyer_name, buyer_phone):
        """Reserve every requested ticket for one buyer, or none of them."""
        numbers = sorted(set(ticket_numbers or []))
        safe_name = self.validator.sanitize_string(buyer_name, max_length=120)
        safe_phone = self.validator.sanitize_string(buyer_phone, max_length=30)
        if not numbers or not safe_name or not self.validator.validate_phone(safe_phone):
            return OperationResult.failure(Failure.INVALID_INPUT)

        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            if raffle.status != RaffleStatus.ACTIVE:
                return OperationResult.failure(Failure.RAFFLE_NOT_ORDERABLE, value=raffle)

            taken = []
            for number in numbers:
                ticket = raffle.ticket(number)
                if ticket is None or ticket.status != TicketStatus.AVAILABLE:
                    taken.append(number)
            if taken:
                return OperationResult.failure(Failure.TICKETS_UNAVAILABLE, value=raffle, taken=taken)

            for number in numbers:
                ticket = raffle.ticket(number)
                ticket.status = TicketStatus.RESERVED
                ticket.buyer_name = safe_name
                ticket.buyer_phone = safe_phone
            try:
                self._save(raffle)
            except StorageError as e:
                logger.error("Reserving tickets on raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)

        logger.info("Raffle %s: reserved tickets %s", raffle_id, numbers)
        return OperationResult.success(raffle, reserved=numbers)

    def confirm_ticket_payment(self, raffle_id, ticket_number):
        """Promote a reserved ticket to sold. Available or sold tickets are left alone."""
        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            ticket = raffle.ticket(ticket_number)
            if ticket is None or ticket.status != TicketStatus.RESERVED:
                return OperationResult.failure(Failure.NOT_FOUND, value=raffle)
            ticket.status = TicketStatus.SOLD
            try:
                self._save(raffle)
            except StorageError as e:
                logger.error("Confirming ticket %s on raffle %s failed: %s", ticket_number, raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        self._audit('TICKET_SOLD', raffle_id, {'ticket_number': ticket_number})
        return OperationResult.success(raffle)

    # -- draw ----------------------------------------------------------------

    def draw_winner(self, raffle_id):
        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            if raffle.winner_ticket_number is not None:
                return OperationResult.failure(Failure.ALREADY_DRAWN, value=raffle)
            sold = raffle.sold_tickets()  # already in ticket-number order
            if not sold:
                return OperationResult.failure(Failure.NO_SOLD_TICKETS, value=raffle)
            if raffle.status != RaffleStatus.ACTIVE:
                return OperationResult.failure(Failure.INVALID_TRANSITION, value=raffle)

            winner = sold[self.rng.randrange(len(sold))]
            raffle.winner_ticket_number = winner.number
            raffle.draw_completion_date = datetime.now(timezone.utc)
            raffle.status = RaffleStatus.FINISHED
            try:
                self._save(raffle)
            except StorageError as e:
                logger.error("Saving draw for raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)

        logger.info("Raffle %s drawn: ticket %d among %d sold", raffle_id, winner.number, len(sold))
        self._audit('WINNER_DRAWN', raffle_id, {'winner_ticket_number': winner.number, 'sold_count': len(sold)})
        return OperationResult.success(raffle)

    # -- lifecycle -------------------------------------------------------------

    def _on_payment_confirmed(self, payment):
        result = self.activate(payment.raffle_id, payment.id)
        if not result.ok and result.error != Failure.NOT_FOUND:
            logger.info("Raffle %s not activated by payment %s: %s",
                        payment.raffle_id, payment.id, result.error.value)

    def activate(self, raffle_id, payment_id):
        """awaiting_payment -> active when payment_id is the raffle's confirmed fee. Idempotent."""
        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            if raffle.payment_id != payment_id:
                return OperationResult.failure(Failure.INVALID_INPUT, value=raffle)
            if raffle.status == RaffleStatus.ACTIVE:
                return OperationResult.success(raffle, changed=False)
            if raffle.status != RaffleStatus.AWAITING_PAYMENT:
                return OperationResult.failure(Failure.INVALID_TRANSITION, value=raffle)
            raffle.status = RaffleStatus.ACTIVE
            try:
                self._save(raffle)
            except StorageError as e:
                logger.error("Activating raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        logger.info("Raffle %s activated", raffle_id)
        self._audit('RAFFLE_ACTIVATED', raffle_id, {'payment_id': payment_id})
        return OperationResult.success(raffle, changed=True)

    def set_draft(self, raffle_id, draft=True):
        """Site-admin toggle between draft and awaiting_payment."""
        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            source = RaffleStatus.AWAITING_PAYMENT if draft else RaffleStatus.DRAFT
            target = RaffleStatus.DRAFT if draft else RaffleStatus.AWAITING_PAYMENT
            if raffle.status == target:
                return OperationResult.success(raffle, changed=False)
            if raffle.status != source:
                return OperationResult.failure(Failure.INVALID_TRANSITION, value=raffle)
            raffle.status = target
            try:
                self._save(raffle)
            except StorageError as e:
                logger.error("Changing status of raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        self._audit('RAFFLE_STATUS_CHANGED', raffle_id, {'status': target.value})

        if not draft and raffle.payment_id:
            payment = self.ledger.get(raffle.payment_id)
            if payment is not None and payment.status == PaymentStatus.CONFIRMED:
                return self.activate(raffle_id, payment.id)
        return OperationResult.success(raffle, changed=True)

    def update_details(self, raffle_id, update):
        """Apply a RaffleUpdate's metadata fields; tickets, status and winner are never touched here."""
        sanitize = self.validator.sanitize_string
        changes = {}
        if update.name is not None:
            changes['name'] = sanitize(update.name, max_length=120)
        if update.description is not None:
            changes['description'] = self.validator.sanitize_rich_text(update.description)
        if update.draw_date is not None:
            changes['draw_date'] = update.draw_date
        if update.ticket_price is not None:
            changes['ticket_price'] = update.ticket_price
        if update.responsible_name is not None:
            changes['responsible_name'] = sanitize(update.responsible_name, max_length=120)
        if update.responsible_phone is not None:
            changes['responsible_phone'] = sanitize(update.responsible_phone, max_length=30)
        if update.pix_key_type is not None:
            changes['pix_key_type'] = update.pix_key_type
        if update.pix_key is not None:
            changes['pix_key'] = sanitize(update.pix_key, max_length=140)
        if update.prizes is not None:
            changes['prizes'] = [
                Prize(id=sanitize(p.id, max_length=64), description=sanitize(p.description),
                      photo=sanitize(p.photo, max_length=2048))
                for p in update.prizes
            ]

        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            try:
                for field, value in changes.items():
                    setattr(raffle, field, value)
            except ValidationError as e:
                logger.info("Rejected update for raffle %s: %s", raffle_id, e)
                return OperationResult.failure(Failure.INVALID_INPUT)
            try:
                self._save(raffle)
            except StorageError as e:
                logger.error("Updating raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        self._audit('RAFFLE_UPDATED', raffle_id, {'fields_updated': sorted(changes)})
        return OperationResult.success(raffle)

    # -- deletion --------------------------------------------------------------

    def delete(self, raffle_id):
        """Remove the raffle with its payment, proof and admin credential in one batch."""
        with self.locks.hold(self._lock_key(raffle_id)):
            raffle = self.get(raffle_id)
            if raffle is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            ops = [delete_op(RAFFLES, raffle_id), delete_op(CREDENTIALS, raffle_id)]
            if raffle.payment_id:
                ops.append(delete_op(PAYMENTS, raffle.payment_id))
                ops.append(delete_op(PROOFS, raffle.payment_id))
            try:
                self.store.apply(ops)
            except StorageError as e:
                logger.error("Deleting raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)

        logger.info("Raffle %s deleted", raffle_id)
        self._audit('RAFFLE_DELETED', raffle_id, {'payment_id': raffle.payment_id})
        for listener in self._deletion_listeners:
            try:
                listener(raffle)
            except Exception as e:
                logger.error("Post-deletion step failed for raffle %s: %s", raffle_id, e)
        return OperationResult.success(raffle)

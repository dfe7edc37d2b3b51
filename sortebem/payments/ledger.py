# sortebem/payments/ledger.py

import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from sortebem.database.document_store import PAYMENTS, PROOFS
from sortebem.database.locks import KeyedLock
from sortebem.errors import StorageError
from sortebem.results import Failure, OperationResult
from sortebem.schemas import Payment, PaymentMethod, PaymentProof, PaymentStatus

logger = logging.getLogger(__name__)

# Activation-fee payments: pending -> confirmed | rejected, both terminal.
# Manual confirmation (site admin), the gateway poller and the webhook all go
# through confirm(); listeners registered with add_confirmation_listener run
# after every confirm, including repeated ones, so they must be idempotent.


class PaymentLedger:
    def __init__(self, store, validator, audit_logger=None, locks=None):
        self.store = store
        self.validator = validator
        self.audit = audit_logger
        self.locks = locks or KeyedLock()
        self._confirmation_listeners = []

    def add_confirmation_listener(self, listener):
        self._confirmation_listeners.append(listener)

    def _lock_key(self, payment_id):
        return f"payment:{payment_id}"

    def _audit(self, action, payment, details=None, success=True):
        if self.audit is not None:
            data = {'payment_id': payment.id}
            data.update(details or {})
            self.audit.log_action(action, payment.raffle_id, data, success)

    @staticmethod
    def new_activation_payment(raffle_id, amount, reference=None) -> Payment:
        """Build (but do not store) the activation-fee payment for a new raffle."""
        return Payment(
            id=f"payment-{raffle_id}",
            raffle_id=raffle_id,
            amount=amount,
            reference=reference or f"SORTEIO-{raffle_id}",
        )

    def get(self, payment_id):
        doc = self.store.get(PAYMENTS, payment_id)
        return Payment.model_validate(doc) if doc is not None else None

    def list_all(self):
        payments = [Payment.model_validate(d) for d in self.store.get_all(PAYMENTS)]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    def list_pending(self):
        return [p for p in self.list_all() if p.status == PaymentStatus.PENDING]

    def find_by_charge_id(self, charge_id):
        if not charge_id:
            return None
        for doc in self.store.get_all(PAYMENTS):
            if doc.get('gateway_charge_id') == charge_id:
                return Payment.model_validate(doc)
        return None

    def attach_gateway_charge(self, payment_id, charge):
        """Record the gateway charge for a pending payment and mark it gateway-backed."""
        with self.locks.hold(self._lock_key(payment_id)):
            payment = self.get(payment_id)
            if payment is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            if payment.status != PaymentStatus.PENDING:
                return OperationResult.failure(Failure.INVALID_TRANSITION, value=payment)
            payment = payment.model_copy(update={
                'payment_method': PaymentMethod.GATEWAY,
                'gateway_charge_id': charge.charge_id,
                'gateway_url': charge.url,
                'gateway_pix_code': charge.pix_code,
            })
            try:
                self.store.put(PAYMENTS, payment.to_document())
            except StorageError as e:
                logger.error("Attaching charge %s to payment %s failed: %s", charge.charge_id, payment_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        self._audit('GATEWAY_CHARGE_ATTACHED', payment, {'charge_id': charge.charge_id})
        return OperationResult.success(payment)

    def confirm(self, payment_id, notes=None):
        with self.locks.hold(self._lock_key(payment_id)):
            try:
                payment = self.get(payment_id)
            except (StorageError, ValidationError) as e:
                logger.error("Loading payment %s failed: %s", payment_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
            if payment is None:
                return OperationResult.failure(Failure.NOT_FOUND)

            if payment.status == PaymentStatus.CONFIRMED:
                result = OperationResult.failure(Failure.ALREADY_CONFIRMED, value=payment)
            elif payment.status == PaymentStatus.REJECTED:
                return OperationResult.failure(Failure.INVALID_TRANSITION, value=payment)
            else:
                payment = payment.model_copy(update={
                    'status': PaymentStatus.CONFIRMED,
                    'confirmed_at': datetime.now(timezone.utc),
                    'notes': self.validator.sanitize_optional(notes, max_length=1000) or None,
                })
                try:
                    self.store.put(PAYMENTS, payment.to_document())
                except StorageError as e:
                    logger.error("Confirming payment %s failed: %s", payment_id, e)
                    return OperationResult.failure(Failure.STORAGE_ERROR)
                result = OperationResult.success(payment)

        if result.ok:
            logger.info("Payment %s confirmed for raffle %s", payment.id, payment.raffle_id)
            self._audit('PAYMENT_CONFIRMED', payment)
        self._notify_confirmed(payment)
        return result

    def _notify_confirmed(self, payment):
        for listener in self._confirmation_listeners:
            try:
                listener(payment)
            except Exception as e:
                # confirmation stands; the listener is retried on the next confirm
                logger.error("Post-confirmation step failed for payment %s: %s", payment.id, e)

    def reject(self, payment_id, notes=None):
        with self.locks.hold(self._lock_key(payment_id)):
            payment = self.get(payment_id)
            if payment is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            if payment.status != PaymentStatus.PENDING:
                return OperationResult.failure(Failure.INVALID_TRANSITION, value=payment)
            payment = payment.model_copy(update={
                'status': PaymentStatus.REJECTED,
                'rejected_at': datetime.now(timezone.utc),
                'notes': self.validator.sanitize_optional(notes, max_length=1000) or None,
            })
            try:
                self.store.put(PAYMENTS, payment.to_document())
            except StorageError as e:
                logger.error("Rejecting payment %s failed: %s", payment_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        logger.info("Payment %s rejected for raffle %s", payment.id, payment.raffle_id)
        self._audit('PAYMENT_REJECTED', payment)
        return OperationResult.success(payment)

    def save_proof(self, payment_id, image_ref):
        """Store buyer-submitted evidence; a newer proof replaces the previous one."""
        if not image_ref:
            return OperationResult.failure(Failure.INVALID_INPUT, field='image_ref')
        with self.locks.hold(self._lock_key(payment_id)):
            payment = self.get(payment_id)
            if payment is None:
                return OperationResult.failure(Failure.NOT_FOUND)
            proof = PaymentProof(payment_id=payment_id,
                                 image_ref=self.validator.sanitize_string(image_ref, max_length=2048))
            try:
                self.store.put(PROOFS, proof.to_document())
            except StorageError as e:
                logger.error("Saving proof for payment %s failed: %s", payment_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
        self._audit('PAYMENT_PROOF_SUBMITTED', payment)
        return OperationResult.success(proof)

    def get_proof(self, payment_id):
        doc = self.store.get(PROOFS, payment_id)
        if doc is None:
            return None
        doc.pop('id', None)
        return PaymentProof.model_validate(doc)

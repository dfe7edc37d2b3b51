# sortebem/raffles/onboarding.py

import logging

from sortebem.errors import ConfigurationError
from sortebem.payments.gateway import Payer
from sortebem.results import Failure, OperationResult
from sortebem.schemas import PaymentMethod

logger = logging.getLogger(__name__)


class RaffleOnboarding:
    """Creation flow for a new raffle.

    1. raffle and its pending activation-fee payment are written together
    2. the raffle's admin credential goes to the vault; if that fails the
       raffle is removed again
    3. a PIX charge is requested from the gateway; when the gateway is
       unavailable the payment stays ``manual`` and the organizer pays by
       manual confirmation, otherwise it becomes ``gateway`` and is polled
    """

    def __init__(self, raffles, ledger, vault, gateway, poller, validator,
                 activation_fee, public_base_url=""):
        self.raffles = raffles
        self.ledger = ledger
        self.vault = vault
        self.gateway = gateway
        self.poller = poller
        self.validator = validator
        self.activation_fee = activation_fee
        self.public_base_url = public_base_url.rstrip('/')

    def open_raffle(self, data):
        if not self.validator.validate_email(data.admin_email.strip()):
            return OperationResult.failure(Failure.INVALID_INPUT, field='admin_email')

        created = self.raffles.create(data, self.activation_fee)
        if not created.ok:
            return created
        raffle = created.value
        payment = created.details['payment']

        try:
            secured = self.vault.create_credential(raffle.id, data.admin_email.strip(), data.admin_password)
        except ConfigurationError:
            self.raffles.delete(raffle.id)
            raise
        if not secured.ok:
            logger.error("Raffle %s rolled back: admin credential not stored (%s)", raffle.id, secured.error.value)
            self.raffles.delete(raffle.id)
            return OperationResult.failure(secured.error, **secured.details)

        payment = self._request_charge(raffle, payment, data)
        return OperationResult.success(raffle, payment=payment, payment_method=payment.payment_method.value)

    def _request_charge(self, raffle, payment, data):
        charge = self.gateway.create_charge(
            payment.amount_cents,
            Payer(name=data.responsible_name, email=data.admin_email.strip(), phone=data.responsible_phone or None),
            f"Ativação Rifa: {raffle.name}",
            f"{self.public_base_url}/#/rifa/{raffle.id}/pagamento" if self.public_base_url else None,
        )
        if charge is None:
            logger.warning("Could not create PIX charge for raffle %s; falling back to manual payment", raffle.id)
            return payment

        attached = self.ledger.attach_gateway_charge(payment.id, charge)
        if not attached.ok:
            logger.error("Charge %s could not be attached to payment %s", charge.charge_id, payment.id)
            return payment
        payment = attached.value
        if payment.payment_method == PaymentMethod.GATEWAY:
            self.poller.start(payment.id)
        return payment

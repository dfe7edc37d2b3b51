# sortebem/payments/poller.py

import logging
import threading

from sortebem.payments.gateway import GatewayStatus
from sortebem.schemas import PaymentStatus

logger = logging.getLogger(__name__)

AUTO_CONFIRM_NOTE = "Pago via PIX (confirmação automática)"

# Background reconciliation of gateway charges. One daemon thread per pending
# gateway-backed payment asks the gateway for the charge status on a fixed
# interval and feeds PAID into PaymentLedger.confirm. A poll stops for good
# when the payment leaves pending, the charge reaches a terminal status, the
# payment or raffle disappears, or its handle is cancelled.


class PollHandle:
    def __init__(self, payment_id):
        self.payment_id = payment_id
        self._stop = threading.Event()
        self.thread = None

    @property
    def active(self):
        return self.thread is not None and self.thread.is_alive() and not self._stop.is_set()

    def cancel(self, timeout=None):
        """Stop polling. Joins the worker only when a timeout is given, so request
        handlers never wait on an in-flight gateway call."""
        self._stop.set()
        if timeout is not None and self.thread is not None and self.thread is not threading.current_thread():
            self.thread.join(timeout=timeout)

    def wait(self, timeout=None):
        if self.thread is not None:
            self.thread.join(timeout=timeout)


class PaymentPoller:
    def __init__(self, ledger, raffles, gateway, interval=5.0):
        self.ledger = ledger
        self.raffles = raffles
        self.gateway = gateway
        self.interval = interval
        self._handles = {}  # payment_id -> PollHandle
        self._lock = threading.Lock()
        raffles.add_deletion_listener(self.cancel_for_raffle)

    def start(self, payment_id):
        """Start polling a payment unless a poll for it is already running."""
        with self._lock:
            handle = self._handles.get(payment_id)
            if handle is not None and handle.active:
                return handle
            handle = PollHandle(payment_id)
            handle.thread = threading.Thread(
                target=self._run, args=(handle,), name=f"payment-poll-{payment_id}", daemon=True,
            )
            self._handles[payment_id] = handle
        handle.thread.start()
        logger.info("Started gateway polling for payment %s", payment_id)
        return handle

    def resume_pending(self):
        """Restart polls for pending gateway-backed payments, e.g. after a restart."""
        handles = []
        for payment in self.ledger.list_pending():
            if payment.gateway_charge_id:
                handles.append(self.start(payment.id))
        return handles

    def cancel(self, payment_id):
        with self._lock:
            handle = self._handles.pop(payment_id, None)
        if handle is not None:
            handle.cancel()
            logger.info("Cancelled gateway polling for payment %s", payment_id)
        return handle is not None

    def cancel_for_raffle(self, raffle):
        if raffle.payment_id:
            self.cancel(raffle.payment_id)

    def active_payment_ids(self):
        with self._lock:
            return [pid for pid, h in self._handles.items() if h.active]

    def shutdown(self):
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel(timeout=5.0)

    def poll_once(self, payment_id) -> bool:
        """Run a single reconciliation step. Returns True while polling should continue."""
        payment = self.ledger.get(payment_id)
        if payment is None or payment.status != PaymentStatus.PENDING:
            return False
        if self.raffles.get(payment.raffle_id) is None:
            return False
        if not payment.gateway_charge_id:
            return False

        status = self.gateway.check_status(payment.gateway_charge_id)
        if status is GatewayStatus.PAID:
            result = self.ledger.confirm(payment.id, AUTO_CONFIRM_NOTE)
            if not result.ok:
                logger.info("Auto-confirm of payment %s returned %s", payment.id, result.error.value)
            return False
        if status.is_terminal:
            logger.warning("Charge %s for payment %s ended as %s; manual confirmation required",
                           payment.gateway_charge_id, payment.id, status.value)
            return False
        return True

    def _run(self, handle):
        try:
            while not handle._stop.is_set():
                try:
                    keep_polling = self.poll_once(handle.payment_id)
                except Exception as e:
                    logger.error("Polling payment %s failed: %s", handle.payment_id, e)
                    keep_polling = True
                if not keep_polling:
                    break
                handle._stop.wait(self.interval)
        finally:
            handle._stop.set()
            with self._lock:
                if self._handles.get(handle.payment_id) is handle:
                    del self._handles[handle.payment_id]
            logger.debug("Gateway polling for payment %s stopped", handle.payment_id)

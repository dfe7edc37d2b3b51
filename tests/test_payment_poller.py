import threading
import time

import pytest

from conftest import FakeGateway
from sortebem.payments.gateway import GatewayCharge, GatewayStatus
from sortebem.payments.poller import AUTO_CONFIRM_NOTE, PaymentPoller
from sortebem.schemas import PaymentStatus, RaffleStatus


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def poller(ledger, raffle_store, gateway):
    p = PaymentPoller(ledger, raffle_store, gateway, interval=0.01)
    yield p
    p.shutdown()


@pytest.fixture
def gateway_payment(ledger, new_raffle):
    ledger.attach_gateway_charge(new_raffle.payment_id, GatewayCharge(charge_id='bill_1'))
    return ledger.get(new_raffle.payment_id)


def wait_until(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def test_poll_once_keeps_going_while_pending(poller, gateway, gateway_payment, ledger):
    assert poller.poll_once(gateway_payment.id) is True
    assert gateway.checked == ['bill_1']
    assert ledger.get(gateway_payment.id).status == PaymentStatus.PENDING


def test_poll_once_confirms_paid_charge(poller, gateway, gateway_payment, ledger, raffle_store, new_raffle):
    gateway.statuses['bill_1'] = GatewayStatus.PAID
    assert poller.poll_once(gateway_payment.id) is False
    payment = ledger.get(gateway_payment.id)
    assert payment.status == PaymentStatus.CONFIRMED
    assert payment.notes == AUTO_CONFIRM_NOTE
    assert raffle_store.get(new_raffle.id).status == RaffleStatus.ACTIVE


def test_poll_once_stops_on_expired_charge(poller, gateway, gateway_payment, ledger):
    gateway.statuses['bill_1'] = GatewayStatus.EXPIRED
    assert poller.poll_once(gateway_payment.id) is False
    assert ledger.get(gateway_payment.id).status == PaymentStatus.PENDING


def test_poll_once_stops_when_payment_settled(poller, gateway, gateway_payment, ledger):
    ledger.confirm(gateway_payment.id)
    assert poller.poll_once(gateway_payment.id) is False
    assert gateway.checked == []


def test_poll_once_stops_for_manual_or_missing_payment(poller, gateway, ledger, new_raffle):
    assert poller.poll_once(new_raffle.payment_id) is False
    assert poller.poll_once('payment-missing') is False
    assert gateway.checked == []


def test_background_poll_confirms_and_exits(poller, gateway, gateway_payment, ledger):
    handle = poller.start(gateway_payment.id)
    assert wait_until(lambda: len(gateway.checked) >= 2)
    gateway.statuses['bill_1'] = GatewayStatus.PAID
    handle.wait(timeout=2)
    assert not handle.active
    assert ledger.get(gateway_payment.id).status == PaymentStatus.CONFIRMED
    assert poller.active_payment_ids() == []


def test_start_is_idempotent(poller, gateway_payment):
    first = poller.start(gateway_payment.id)
    assert poller.start(gateway_payment.id) is first
    assert poller.active_payment_ids() == [gateway_payment.id]


def test_cancel_stops_polling(poller, gateway, gateway_payment):
    handle = poller.start(gateway_payment.id)
    assert wait_until(lambda: len(gateway.checked) >= 1)
    assert poller.cancel(gateway_payment.id) is True
    assert not handle.active
    handle.wait(timeout=2)
    assert not handle.thread.is_alive()
    checked = len(gateway.checked)
    time.sleep(0.05)
    assert len(gateway.checked) == checked
    assert poller.cancel(gateway_payment.id) is False


def test_cancel_does_not_wait_for_inflight_check(ledger, raffle_store, gateway_payment):
    release = threading.Event()
    entered = threading.Event()

    class StalledGateway(FakeGateway):
        def check_status(self, charge_id):
            entered.set()
            release.wait(timeout=5)
            return super().check_status(charge_id)

    p = PaymentPoller(ledger, raffle_store, StalledGateway(), interval=0.01)
    handle = p.start(gateway_payment.id)
    assert entered.wait(timeout=2)
    started = time.monotonic()
    assert p.cancel(gateway_payment.id) is True
    assert time.monotonic() - started < 1
    assert handle.thread.is_alive()
    release.set()
    handle.wait(timeout=2)
    assert not handle.thread.is_alive()


def test_deleting_raffle_cancels_its_poll(poller, raffle_store, gateway_payment, new_raffle):
    handle = poller.start(gateway_payment.id)
    raffle_store.delete(new_raffle.id)
    handle.wait(timeout=2)
    assert not handle.active
    assert poller.active_payment_ids() == []


def test_resume_pending_only_restarts_gateway_payments(poller, raffle_store, ledger, gateway_payment):
    from conftest import raffle_input
    from decimal import Decimal
    raffle_store.create(raffle_input(name='Manual'), Decimal('20.00'))
    handles = poller.resume_pending()
    assert [h.payment_id for h in handles] == [gateway_payment.id]

import pytest
from datetime import datetime, timedelta, timezone

from sortebem.security.intrusion_detection import LoginRateLimiter


class FrozenClock:
    def __init__(self, start):
        self._now = start

    def advance(self, **kwargs):
        self._now += timedelta(**kwargs)

    def now(self):
        return self._now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 10, 23, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def limiter(monkeypatch, clock):
    rl = LoginRateLimiter(max_attempts=5, window_seconds=60)
    monkeypatch.setattr(rl, '_now', clock.now)
    return rl


def test_blocks_after_max_failures(limiter):
    for expected in range(1, 5):
        assert limiter.record_failed_attempt('raffle-1') == expected
        assert limiter.is_blocked('raffle-1') is False
    assert limiter.record_failed_attempt('raffle-1') == 5
    assert limiter.is_blocked('raffle-1') is True
    assert limiter.retry_after('raffle-1') > 0


def test_identifiers_are_independent(limiter):
    for _ in range(5):
        limiter.record_failed_attempt('raffle-1')
    assert limiter.is_blocked('raffle-1') is True
    assert limiter.is_blocked('raffle-2') is False


def test_window_slides(limiter, clock):
    for _ in range(5):
        limiter.record_failed_attempt('raffle-1')
        clock.advance(seconds=10)
    assert limiter.is_blocked('raffle-1') is True
    # oldest failure ages out of the 60s window
    clock.advance(seconds=11)
    assert limiter.is_blocked('raffle-1') is False
    assert limiter.retry_after('raffle-1') == 0


def test_expired_identifiers_are_dropped_when_table_is_full(monkeypatch, clock):
    rl = LoginRateLimiter(max_attempts=5, window_seconds=60, max_tracked=2)
    monkeypatch.setattr(rl, '_now', clock.now)
    rl.record_failed_attempt('raffle-0')
    rl.record_failed_attempt('raffle-1')
    clock.advance(seconds=61)
    rl.record_failed_attempt('raffle-2')
    assert list(rl.failed_logins) == ['raffle-2']
    rl.record_failed_attempt('raffle-3')
    assert list(rl.failed_logins) == ['raffle-2', 'raffle-3']


def test_retry_after_counts_down(limiter, clock):
    for _ in range(5):
        limiter.record_failed_attempt('raffle-1')
    assert limiter.retry_after('raffle-1') == 60
    clock.advance(seconds=45)
    assert limiter.retry_after('raffle-1') == 15


def test_tracked_identifiers_are_bounded(monkeypatch, clock):
    rl = LoginRateLimiter(max_attempts=5, window_seconds=60, max_tracked=3)
    monkeypatch.setattr(rl, '_now', clock.now)
    for i in range(5):
        rl.record_failed_attempt(f'raffle-{i}')
    assert list(rl.failed_logins) == ['raffle-2', 'raffle-3', 'raffle-4']

# sortebem/security/intrusion_detection.py

import threading
from collections import OrderedDict, deque
from datetime import datetime, timedelta, timezone

# Brute-force throttling for admin logins. Failed attempts are tracked per
# identifier (raffle id, or "site-admin") in a sliding window; once
# max_attempts failures fall inside the window the identifier is blocked
# until the oldest of them ages out.


class LoginRateLimiter:
    def __init__(self, max_attempts=5, window_seconds=60, max_tracked=10000):
        """
        max_attempts: failures within the window that block further attempts
        window_seconds: length of the sliding window
        max_tracked: upper bound on identifiers kept in memory
        """
        self.max_attempts = max_attempts
        self.window = timedelta(seconds=window_seconds)
        self.max_tracked = max_tracked
        self.failed_logins = OrderedDict()  # identifier -> deque[datetime]
        self._lock = threading.Lock()

    def _now(self):
        # extracted for easier monkeypatching in tests
        return datetime.now(timezone.utc)

    def _prune(self, identifier, now):
        attempts = self.failed_logins.get(identifier)
        if attempts is None:
            return None
        while attempts and now - attempts[0] > self.window:
            attempts.popleft()
        if not attempts:
            del self.failed_logins[identifier]
            return None
        return attempts

    def is_blocked(self, identifier):
        """True when the identifier already has max_attempts failures in the window."""
        now = self._now()
        with self._lock:
            attempts = self._prune(identifier, now)
            return attempts is not None and len(attempts) >= self.max_attempts

    def record_failed_attempt(self, identifier):
        """Record a failure and return how many failures are now inside the window."""
        now = self._now()
        with self._lock:
            attempts = self._prune(identifier, now)
            if attempts is None:
                self._make_room(now)
                attempts = deque(maxlen=self.max_attempts)
                self.failed_logins[identifier] = attempts
            attempts.append(now)
            self.failed_logins.move_to_end(identifier)
            return len(attempts)

    def retry_after(self, identifier):
        """Seconds until the identifier drops below the threshold (0 if not blocked)."""
        now = self._now()
        with self._lock:
            attempts = self._prune(identifier, now)
            if attempts is None or len(attempts) < self.max_attempts:
                return 0
            remaining = self.window - (now - attempts[0])
            return max(int(remaining.total_seconds()), 1)

    def _make_room(self, now):
        if len(self.failed_logins) < self.max_tracked:
            return
        # expired identifiers go first, then the least recently failed
        for identifier in list(self.failed_logins):
            self._prune(identifier, now)
        while len(self.failed_logins) >= self.max_tracked:
            self.failed_logins.popitem(last=False)

"""
auth/throttle.py -- Per-principal failed-attempt counter with exponential lockout.

slowapi (api/limiter.py) caps request rates per client IP. That does nothing
against a distributed guesser working on one account, so password and MFA
failures are also counted per key:

    password login  -> key "user:<username>"
    MFA code        -> key "mfa:<user id>"

Once a key reaches max_failures consecutive failures it is locked for
base_seconds, doubling with every further failure up to max_seconds. A
success resets the key. Idle keys are swept at most once per prune_interval,
so a spray of unknown usernames costs one scan per interval rather than one
per failure. State is in-process memory: a restart clears it, and
each worker process counts separately.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Entry:
    failures: int = 0
    locked_until: float = 0.0
    last_failure: float = 0.0


class FailureThrottle:
    def __init__(
        self,
        max_failures: int,
        base_seconds: int,
        max_seconds: int,
        clock: Callable[[], float] = time.monotonic,
        prune_interval: float = 60.0,
    ) -> None:
        self.max_failures = max_failures
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self._clock = clock
        self.prune_interval = prune_interval
        self._entries: dict[str, _Entry] = {}
        self._next_prune = 0.0
        self._lock = threading.Lock()

    def retry_after(self, key: str) -> int:
        """Return whole seconds until key may try again; 0 when it is not locked."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return 0
            remaining = entry.locked_until - self._clock()
        return int(remaining) + 1 if remaining > 0 else 0

    def record_failure(self, key: str) -> int:
        """Count a failure for key. Returns the lockout now in force, in seconds (0 if none)."""
        now = self._clock()
        with self._lock:
            if now >= self._next_prune:
                self._prune(now)
                self._next_prune = now + self.prune_interval
            entry = self._entries.setdefault(key, _Entry())
            entry.failures += 1
            entry.last_failure = now
            if entry.failures < self.max_failures:
                return 0
            lockout = min(self.base_seconds * 2 ** (entry.failures - self.max_failures), self.max_seconds)
            entry.locked_until = now + lockout
            return lockout

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _prune(self, now: float) -> None:
        # Forget keys idle for longer than the longest lockout.
        stale = [k for k, e in self._entries.items() if now - e.last_failure > self.max_seconds and e.locked_until <= now]
        for k in stale:
            del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""
tests/test_throttle.py -- Unit tests for auth/throttle.py (FailureThrottle).

Covers:
  - no lockout below max_failures
  - lockout starts at base_seconds and doubles, capped at max_seconds
  - lockout expires with time; reset() clears the key
  - keys are independent
  - idle keys are swept at most once per prune_interval
"""

from __future__ import annotations

from auth.throttle import FailureThrottle


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _throttle(clock: FakeClock) -> FailureThrottle:
    return FailureThrottle(max_failures=3, base_seconds=30, max_seconds=100, clock=clock)


def test_no_lockout_below_threshold():
    throttle = _throttle(FakeClock())
    assert throttle.record_failure("user:alice") == 0
    assert throttle.record_failure("user:alice") == 0
    assert throttle.retry_after("user:alice") == 0


def test_lockout_doubles_and_caps():
    throttle = _throttle(FakeClock())
    for _ in range(2):
        throttle.record_failure("k")
    assert throttle.record_failure("k") == 30
    assert throttle.record_failure("k") == 60
    assert throttle.record_failure("k") == 100
    assert throttle.record_failure("k") == 100


def test_retry_after_counts_down_and_expires():
    clock = FakeClock()
    throttle = _throttle(clock)
    for _ in range(3):
        throttle.record_failure("k")
    assert throttle.retry_after("k") == 31
    clock.now = 29.5
    assert throttle.retry_after("k") == 1
    clock.now = 30.0
    assert throttle.retry_after("k") == 0


def test_reset_clears_key():
    throttle = _throttle(FakeClock())
    for _ in range(3):
        throttle.record_failure("k")
    throttle.reset("k")
    assert throttle.retry_after("k") == 0
    assert throttle.record_failure("k") == 0


def test_keys_are_independent():
    throttle = _throttle(FakeClock())
    for _ in range(3):
        throttle.record_failure("user:alice")
    assert throttle.retry_after("user:alice") > 0
    assert throttle.retry_after("user:bob") == 0


def test_idle_keys_are_swept_once_per_interval(monkeypatch):
    clock = FakeClock()
    throttle = FailureThrottle(max_failures=3, base_seconds=30, max_seconds=100, clock=clock, prune_interval=60)
    sweeps = []
    real_prune = throttle._prune
    monkeypatch.setattr(throttle, "_prune", lambda now: sweeps.append(now) or real_prune(now))

    for n in range(200):
        throttle.record_failure(f"user:ghost{n}")
    assert len(throttle) == 200
    assert sweeps == [0.0]

    clock.now = 59.0
    throttle.record_failure("user:late")
    assert sweeps == [0.0]

    clock.now = 150.0
    throttle.record_failure("user:alice")
    assert sweeps == [0.0, 150.0]
    # ghosts idled past max_seconds; "late" failed at 59 and is still within it
    assert len(throttle) == 2

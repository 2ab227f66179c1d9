"""
tests/test_sessions.py -- Unit tests for auth/sessions.py (SessionStore).

A fake clock is injected so expiry is tested without sleeping.

Covers:
  - create/get round trip; the raw id is never the storage key
  - expiry: an expired session reads as None and is removed
  - sliding expiry via touch()
  - destroy, destroy_all_for_user (keeping one), purge_expired
  - enrollment tickets: put/get/clear, own TTL, removed with the session
"""

from __future__ import annotations

import pytest

from auth.sessions import SessionStore, session_key
from conftest import memory_db_url


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock):
    s = SessionStore(db_url=memory_db_url(), max_age=100, enrollment_ttl=10, clock=clock)
    yield s
    s.close()


def test_create_and_get(store):
    sid = store.create(user_id=7)
    session = store.get(sid)
    assert session is not None
    assert session.user_id == 7
    assert session.key == session_key(sid)
    assert session.key != sid


def test_get_unknown_or_empty_id_returns_none(store):
    assert store.get("nope") is None
    assert store.get("") is None
    assert store.get(None) is None


def test_session_ids_are_unique(store):
    assert store.create(1) != store.create(1)


def test_expired_session_reads_as_none_and_is_removed(store, clock):
    sid = store.create(7)
    clock.advance(100)
    assert store.get(sid) is None
    clock.now -= 100
    assert store.get(sid) is None  # row was deleted, not just hidden


def test_touch_slides_expiry(store, clock):
    sid = store.create(7)
    clock.advance(90)
    store.touch(sid)
    clock.advance(90)
    session = store.get(sid)
    assert session is not None
    assert session.expires_at == clock.now + 10


def test_destroy(store):
    sid = store.create(7)
    assert store.destroy(sid) is True
    assert store.get(sid) is None
    assert store.destroy(sid) is False


def test_destroy_all_for_user_keeps_one(store):
    keep = store.create(7)
    other_a = store.create(7)
    other_b = store.create(7)
    unrelated = store.create(8)
    assert store.destroy_all_for_user(7, keep_session_id=keep) == 2
    assert store.get(keep) is not None
    assert store.get(other_a) is None
    assert store.get(other_b) is None
    assert store.get(unrelated) is not None


def test_purge_expired(store, clock):
    old = store.create(1)
    clock.advance(50)
    young = store.create(2)
    clock.advance(60)
    assert store.purge_expired() == 1
    assert store.get(young) is not None
    clock.now -= 1000
    assert store.get(old) is None


def test_enrollment_ticket_round_trip(store):
    sid = store.create(7)
    ticket = store.put_enrollment_secret(sid, "SECRETSECRET")
    assert ticket.session_key == session_key(sid)
    assert store.get_enrollment_secret(sid) == "SECRETSECRET"
    store.clear_enrollment_secret(sid)
    assert store.get_enrollment_secret(sid) is None


def test_enrollment_ticket_is_replaced(store):
    sid = store.create(7)
    store.put_enrollment_secret(sid, "FIRST")
    store.put_enrollment_secret(sid, "SECOND")
    assert store.get_enrollment_secret(sid) == "SECOND"


def test_enrollment_ticket_expires_on_its_own_ttl(store, clock):
    sid = store.create(7)
    store.put_enrollment_secret(sid, "SECRET")
    clock.advance(10)
    assert store.get(sid) is not None
    assert store.get_enrollment_secret(sid) is None


def test_enrollment_ticket_is_bound_to_its_session(store):
    a = store.create(7)
    b = store.create(7)
    store.put_enrollment_secret(a, "SECRET")
    assert store.get_enrollment_secret(b) is None


def test_destroying_session_removes_its_ticket(store):
    sid = store.create(7)
    store.put_enrollment_secret(sid, "SECRET")
    store.destroy(sid)
    assert store.get_enrollment_secret(sid) is None

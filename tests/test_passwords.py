"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash/verify round trip and mismatch
  - two hashes of the same password differ (random salt)
  - stored format "<128 hex>.<32 hex>"
  - malformed stored strings fail closed instead of raising
  - legacy plaintext detection
"""

from __future__ import annotations

import pytest

from auth.passwords import DUMMY_HASH, hash_password, is_legacy_plaintext, verify_password


def test_round_trip_accepts_same_password():
    assert verify_password("s3cret!", hash_password("s3cret!")) is True


def test_rejects_different_password():
    assert verify_password("wrong", hash_password("s3cret!")) is False


def test_hash_is_salted():
    assert hash_password("s3cret!") != hash_password("s3cret!")


def test_stored_format_is_hex_key_dot_hex_salt():
    key_hex, sep, salt_hex = hash_password("s3cret!").partition(".")
    assert sep == "."
    assert len(key_hex) == 128
    assert len(salt_hex) == 32
    bytes.fromhex(key_hex)
    bytes.fromhex(salt_hex)


def test_unicode_password_round_trip():
    assert verify_password("pässwörd-密码", hash_password("pässwörd-密码")) is True


@pytest.mark.parametrize(
    "stored",
    [
        None,
        "",
        "no-separator-here",
        ".",
        "abcd.",
        ".abcd",
        "zz" * 64 + "." + "00" * 16,  # non-hex key
        "00" * 64 + ".not-hex",
        "00" * 10 + "." + "00" * 16,  # key of the wrong length
    ],
)
def test_malformed_stored_value_fails_closed(stored):
    assert verify_password("anything", stored) is False


def test_empty_supplied_password_is_rejected():
    assert verify_password("", hash_password("s3cret!")) is False


def test_empty_password_cannot_be_hashed():
    with pytest.raises(ValueError):
        hash_password("")


def test_dummy_hash_is_well_formed_and_matches_nothing_common():
    assert not is_legacy_plaintext(DUMMY_HASH)
    assert verify_password("password", DUMMY_HASH) is False


@pytest.mark.parametrize(
    ("stored", "expected"),
    [
        ("plaintext", True),
        (hash_password("x"), False),
        ("", False),
        (None, False),
    ],
)
def test_is_legacy_plaintext(stored, expected):
    assert is_legacy_plaintext(stored) is expected

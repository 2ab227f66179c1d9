"""
auth/passwords.py -- Salted password hashing and verification.

Stored format: "<hex derived key>.<hex salt>"
  salt -- 16 random bytes from secrets.token_bytes
  key  -- 64 bytes from bcrypt.kdf (bcrypt_pbkdf), a deliberately slow KDF.
          The round count comes from Settings.password_kdf_rounds and is NOT
          encoded in the stored string, so it must stay fixed per deployment.

Verification re-derives the key from the supplied password and the stored salt
and compares with hmac.compare_digest. A plain == on the key bytes would leak
how many leading bytes matched through response timing.

Legacy plaintext: rows created before hashing existed hold the password as-is
(no "." separator). is_legacy_plaintext() detects them; AuthService accepts a
matching plaintext once and immediately replaces it with a hash.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hmac
import secrets

import bcrypt

from core.config import get_settings

_settings = get_settings()

SEPARATOR = "."
_SALT_BYTES = 16
_KEY_BYTES = 64


def _derive(password: str, salt: bytes) -> bytes:
    # ignore_few_rounds: Settings already refuses low round counts outside DEBUG.
    return bcrypt.kdf(
        password=password.encode("utf-8"),
        salt=salt,
        desired_key_bytes=_KEY_BYTES,
        rounds=_settings.password_kdf_rounds,
        ignore_few_rounds=True,
    )


def hash_password(password: str) -> str:
    """Return "<hex key>.<hex salt>" for password. Two calls never return the same string.

    Raises ValueError for an empty password (bcrypt_pbkdf refuses empty input);
    the API layer rejects empty passwords before they get here.
    """
    salt = secrets.token_bytes(_SALT_BYTES)
    return f"{_derive(password, salt).hex()}{SEPARATOR}{salt.hex()}"


def verify_password(supplied: str, stored: str | None) -> bool:
    """Return True if supplied matches the stored hash string.

    Fails closed: a missing value, a value without the separator, an empty or
    non-hex half, or a key of the wrong length all return False. Never raises.
    """
    if not stored or SEPARATOR not in stored:
        return False
    key_hex, _, salt_hex = stored.partition(SEPARATOR)
    if not key_hex or not salt_hex:
        return False
    try:
        expected = bytes.fromhex(key_hex)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    if len(expected) != _KEY_BYTES:
        return False
    try:
        derived = _derive(supplied, salt)
    except ValueError:
        # Empty supplied password.
        return False
    return hmac.compare_digest(derived, expected)


def is_legacy_plaintext(stored: str | None) -> bool:
    """Return True for a stored credential that predates hashing (no separator)."""
    return bool(stored) and SEPARATOR not in stored


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than later ones. Unknown usernames are verified against this so the
# KDF cost is paid either way and response time does not reveal whether the
# username exists.
DUMMY_HASH: str = hash_password("assetmis_timing_dummy")

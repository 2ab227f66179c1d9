"""
auth/totp.py -- Time-based one-time passwords (RFC 6238) for MFA.

pyotp does the RFC work: 30-second steps, 6 digits, SHA-1 -- the defaults
every authenticator app (Microsoft/Google Authenticator, Authy) expects.
qrcode renders the provisioning URI so the user can scan it.

verify_code() tolerates clock drift of totp_valid_window steps either side
(default 2, i.e. +/-60s). Input that is not exactly six ASCII digits is
rejected before any HMAC is computed.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO

import pyotp
import qrcode

from core.config import get_settings

_settings = get_settings()

_CODE_RE = re.compile(r"[0-9]{6}")


@dataclass(frozen=True)
class TotpSecret:
    secret: str  # base32
    otpauth_url: str


def generate_secret(account_name: str) -> TotpSecret:
    """Create a fresh random secret and its otpauth:// provisioning URI.

    The account label shown in the authenticator app is "<issuer> (<account_name>)".
    Nothing is stored here; the caller decides where the secret lives.
    """
    secret = pyotp.random_base32()
    issuer = _settings.totp_issuer
    url = pyotp.TOTP(secret).provisioning_uri(name=f"{issuer} ({account_name})", issuer_name=issuer)
    return TotpSecret(secret=secret, otpauth_url=url)


def render_qr_code(otpauth_url: str) -> str:
    """Encode otpauth_url as a QR code and return it as a PNG data URI."""
    img = qrcode.make(otpauth_url)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def is_well_formed(code: object) -> bool:
    """Return True for exactly six ASCII digits, nothing else."""
    return isinstance(code, str) and _CODE_RE.fullmatch(code) is not None


def verify_code(
    secret: str,
    code: object,
    window: int | None = None,
    for_time: datetime | int | None = None,
) -> bool:
    """Return True if code matches secret at for_time (default: now) +/- window steps.

    Malformed codes fail before pyotp is called. A secret that is not valid
    base32 fails closed.
    """
    if not is_well_formed(code):
        return False
    if window is None:
        window = _settings.totp_valid_window
    try:
        return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=window)
    except (ValueError, TypeError):
        # binascii.Error (bad base32) is a ValueError subclass.
        return False


def current_code(secret: str, for_time: datetime | int | None = None) -> str:
    """Return the code an authenticator would show for secret at for_time (default: now)."""
    totp = pyotp.TOTP(secret)
    return totp.now() if for_time is None else totp.at(for_time)

"""
tests/test_totp.py -- Unit tests for auth/totp.py.

Covers:
  - codes from the same secret verify; other secrets' codes do not
  - drift tolerance: +/-60s accepted, +/-90s rejected with the default window
  - non-6-digit input is rejected before pyotp is ever called
  - provisioning URI carries issuer and account label
  - QR code renders as a PNG data URI
"""

from __future__ import annotations

import base64
from unittest.mock import patch
from urllib.parse import unquote

import pytest

from auth.totp import current_code, generate_secret, is_well_formed, render_qr_code, verify_code

SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
# Aligned to a 30-second step boundary so "+60s" is exactly two steps.
T0 = 30 * 56_000_000


def test_generated_secret_is_base32_with_provisioning_uri():
    totp_secret = generate_secret("alice")
    base64.b32decode(totp_secret.secret)
    url = unquote(totp_secret.otpauth_url)
    assert url.startswith("otpauth://totp/")
    assert "AssetMIS (alice)" in url
    assert "issuer=AssetMIS" in url


def test_generated_secrets_differ():
    assert generate_secret("alice").secret != generate_secret("alice").secret


def test_current_code_verifies_now():
    assert verify_code(SECRET, current_code(SECRET)) is True


def test_wrong_code_is_rejected():
    code = current_code(SECRET, for_time=T0)
    wrong = f"{(int(code) + 1) % 1_000_000:06d}"
    assert verify_code(SECRET, wrong, window=0, for_time=T0) is False


@pytest.mark.parametrize("offset", [-60, -30, 0, 30, 60])
def test_drift_within_window_is_accepted(offset):
    code = current_code(SECRET, for_time=T0)
    assert verify_code(SECRET, code, for_time=T0 + offset) is True


@pytest.mark.parametrize("offset", [-90, 90, 120])
def test_drift_outside_window_is_rejected(offset):
    code = current_code(SECRET, for_time=T0)
    assert verify_code(SECRET, code, for_time=T0 + offset) is False


def test_window_zero_is_exact_step_only():
    code = current_code(SECRET, for_time=T0)
    assert verify_code(SECRET, code, window=0, for_time=T0) is True
    assert verify_code(SECRET, code, window=0, for_time=T0 + 30) is False


@pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456", " 123456", "123456\n", "１２３４５６", 123456, None])
def test_malformed_code_is_rejected_without_crypto(code):
    with patch("auth.totp.pyotp.TOTP") as totp_cls:
        assert verify_code(SECRET, code) is False
    totp_cls.assert_not_called()


@pytest.mark.parametrize(("code", "expected"), [("000000", True), ("123456", True), ("12345", False), (123456, False)])
def test_is_well_formed(code, expected):
    assert is_well_formed(code) is expected


def test_invalid_secret_fails_closed():
    assert verify_code("not base32 !!", "123456") is False


def test_qr_code_is_png_data_uri():
    uri = render_qr_code(generate_secret("alice").otpauth_url)
    prefix = "data:image/png;base64,"
    assert uri.startswith(prefix)
    assert base64.b64decode(uri[len(prefix):]).startswith(b"\x89PNG")

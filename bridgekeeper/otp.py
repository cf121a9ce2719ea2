"""
Bridgekeeper - TOTP Engine
============================
Time-based one-time passwords for two-factor login (RFC 6238, the
authenticator-app defaults: 6 digits, 30-second step, HMAC-SHA1, base32
secrets).

Guardrail profiles:
    Before a code is checked, the secret's decoded length must fall inside a
    guardrail profile. Current secrets are 32 base32 characters (20 bytes)
    and pass the STANDARD profile. Early console releases generated 16
    character secrets (10 bytes); those fail STANDARD as too short and are
    retried under the LEGACY profile, and the result says so, letting the
    caller flag the account and ask the user to re-enroll.

Verification never raises for a bad code or a bad secret. The outcome is an
OtpVerification whose ``reason`` tag tells the caller what happened.
"""

import binascii
import math
from dataclasses import dataclass
from datetime import datetime

import pyotp

OTP_DIGITS = 6
OTP_INTERVAL = 30
SECRET_LENGTH = 32
LEGACY_SECRET_LENGTH = 16

REASON_OK = "ok"
REASON_INVALID_CODE = "invalid_code"
REASON_MALFORMED_CODE = "malformed_code"
REASON_SECRET_TOO_SHORT = "secret_too_short"
REASON_SECRET_TOO_LONG = "secret_too_long"
REASON_INVALID_SECRET = "invalid_secret"


@dataclass(frozen=True)
class GuardrailProfile:
    """Accepted range for the decoded secret length, in bytes."""

    name: str
    min_secret_bytes: int
    max_secret_bytes: int


STANDARD_GUARDRAILS = GuardrailProfile("standard", min_secret_bytes=16, max_secret_bytes=64)
LEGACY_GUARDRAILS = GuardrailProfile("legacy", min_secret_bytes=10, max_secret_bytes=64)


@dataclass(frozen=True)
class OtpVerification:
    """
    Outcome of a verification attempt.

    Attributes:
        valid:  True when the code matched inside the tolerance window.
        reason: One of the REASON_* tags.
        legacy: True when the legacy guardrail profile was needed.
    """

    valid: bool
    reason: str
    legacy: bool = False


class OtpEngine:
    """Generates secrets and verifies codes against them."""

    def __init__(
        self,
        standard: GuardrailProfile = STANDARD_GUARDRAILS,
        legacy: GuardrailProfile = LEGACY_GUARDRAILS,
    ):
        self.standard = standard
        self.legacy = legacy

    def generate_secret(self) -> str:
        """Return a new 32-character base32 secret (20 random bytes)."""
        return pyotp.random_base32(length=SECRET_LENGTH)

    def build_provisioning_uri(self, issuer: str, label: str, secret: str) -> str:
        """Build the otpauth:// URI that authenticator apps enroll from."""
        totp = pyotp.TOTP(secret, digits=OTP_DIGITS, interval=OTP_INTERVAL)
        return totp.provisioning_uri(name=label, issuer_name=issuer)

    def verify(
        self,
        code: str,
        secret: str,
        tolerance_seconds: int = 30,
        for_time: datetime | None = None,
    ) -> OtpVerification:
        """
        Verify a code, falling back to the legacy profile for old secrets.

        Args:
            code:              The code typed by the user.
            secret:            Base32 secret from the user record.
            tolerance_seconds: Accepted clock drift either side of now.
            for_time:          Verification instant (defaults to now).

        Returns:
            OtpVerification describing the outcome.
        """
        result = self._verify_with(self.standard, code, secret, tolerance_seconds, for_time)
        if (
            result.reason == REASON_SECRET_TOO_SHORT
            and len(secret or "") == LEGACY_SECRET_LENGTH
        ):
            legacy = self._verify_with(self.legacy, code, secret, tolerance_seconds, for_time)
            return OtpVerification(valid=legacy.valid, reason=legacy.reason, legacy=True)
        return result

    def check_secret(self, secret: str, profile: GuardrailProfile) -> str:
        """Return REASON_OK if the secret fits the profile, else the reason it does not."""
        if not secret:
            return REASON_INVALID_SECRET
        try:
            raw = pyotp.TOTP(secret).byte_secret()
        except (binascii.Error, ValueError):
            return REASON_INVALID_SECRET
        if len(raw) < profile.min_secret_bytes:
            return REASON_SECRET_TOO_SHORT
        if len(raw) > profile.max_secret_bytes:
            return REASON_SECRET_TOO_LONG
        return REASON_OK

    # -- Internal helpers ------------------------------------------------------

    def _verify_with(
        self,
        profile: GuardrailProfile,
        code: str,
        secret: str,
        tolerance_seconds: int,
        for_time: datetime | None,
    ) -> OtpVerification:
        reason = self.check_secret(secret, profile)
        if reason != REASON_OK:
            return OtpVerification(valid=False, reason=reason)

        code = (code or "").strip().replace(" ", "")
        if len(code) != OTP_DIGITS or not code.isdigit():
            return OtpVerification(valid=False, reason=REASON_MALFORMED_CODE)

        totp = pyotp.TOTP(secret, digits=OTP_DIGITS, interval=OTP_INTERVAL)
        if totp.verify(code, for_time=for_time, valid_window=_window_steps(tolerance_seconds)):
            return OtpVerification(valid=True, reason=REASON_OK)
        return OtpVerification(valid=False, reason=REASON_INVALID_CODE)


def _window_steps(tolerance_seconds: int) -> int:
    """Steps either side of the current one; never below one."""
    return max(1, math.ceil(tolerance_seconds / OTP_INTERVAL))

"""
Bridgekeeper - Password Hashing
=================================
Salted PBKDF2-HMAC-SHA512 password digests.

Stored format (per user record in auth.json):
    "salt":           64 hex chars (32 random bytes)
    "hashedPassword": 128 hex chars (64-byte derived key)

The cost constants are fixed: changing them would invalidate every digest
already on disk, including auth.json files carried over from older console
releases.
"""

import hashlib
import hmac
import secrets

HASH_ALGORITHM = "sha512"
HASH_ITERATIONS = 1000
HASH_LENGTH = 64
SALT_BYTES = 32


class PasswordHasher:
    """
    Derives and compares password digests.

    Stateless; a single instance is shared by the credential store and the
    auth coordinator.
    """

    def hash(self, password: str, salt: str) -> str:
        """
        Derive the hex digest for a password/salt pair.

        Args:
            password: Plaintext password.
            salt:     Hex salt as stored on the user record. The salt string
                      itself (not its decoded bytes) is fed to the KDF.

        Returns:
            128-character hex digest.
        """
        derived = hashlib.pbkdf2_hmac(
            HASH_ALGORITHM,
            password.encode("utf-8"),
            salt.encode("utf-8"),
            HASH_ITERATIONS,
            dklen=HASH_LENGTH,
        )
        return derived.hex()

    def gen_salt(self) -> str:
        """Return a fresh random salt, hex encoded."""
        return secrets.token_hex(SALT_BYTES)

    def compare(self, candidate: str, stored: str) -> bool:
        """
        Constant-time comparison of two hex digests.

        Non-hex input or digests of different lengths compare as False.
        """
        try:
            a = bytes.fromhex(candidate or "")
            b = bytes.fromhex(stored or "")
        except (TypeError, ValueError):
            return False
        if not b:
            return False
        return hmac.compare_digest(a, b)

    def verify(self, password: str, salt: str | None, stored: str | None) -> bool:
        """Check a plaintext password against a stored salt/digest pair."""
        if not salt or not stored or password is None:
            return False
        return self.compare(self.hash(password, salt), stored)

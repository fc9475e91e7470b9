"""
auth/passwords.py -- Deterministic salted password hashing.

Security design decisions:
  Login compares a freshly computed hash against the stored one, so the hash
  must be deterministic for a given (password, salt). bcrypt.kdf (bcrypt-pbkdf)
  gives that: the salt is the process-wide PASSWORD_SALT and the work factor is
  the configured number of rounds. The output is base64-encoded for storage.

  Comparison uses hmac.compare_digest so the time taken does not leak how many
  leading characters matched.

  A missing stored hash (unknown user, or an unverified placeholder with no
  password) is compared as "" -- the computed hash is never empty, so the
  result is always False and the caller sees the same outcome as a wrong
  password.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hmac

import bcrypt

from auth.errors import HashingError

_KEY_BYTES = 32
_TIMING_DUMMY = "landinggate_timing_dummy"


class PasswordHasher:
    """Hash and compare passwords with a fixed, configured salt.

    Usage:
        hasher = PasswordHasher(salt=settings.password_salt, rounds=32)
        stored = hasher.hash("qwerty123")
        hasher.matches("qwerty123", stored)   # True
    """

    def __init__(self, salt: str, rounds: int = 32) -> None:
        if not salt:
            raise ValueError("PasswordHasher requires a non-empty salt")
        if rounds < 1:
            raise ValueError("PasswordHasher requires at least one round")
        self._salt = salt.encode("utf-8")
        self._rounds = rounds

    def hash(self, plain: str) -> str:
        """Return the base64 bcrypt-pbkdf digest of plain. Raises HashingError."""
        try:
            digest = bcrypt.kdf(
                password=plain.encode("utf-8"),
                salt=self._salt,
                desired_key_bytes=_KEY_BYTES,
                rounds=self._rounds,
                ignore_few_rounds=True,
            )
        except (ValueError, TypeError) as exc:
            raise HashingError(str(exc)) from exc
        return base64.b64encode(digest).decode("ascii")

    def matches(self, plain: str, stored: str | None) -> bool:
        """Hash plain and compare it to stored in constant time.

        Always runs the hash, even when stored is None, so a missing account
        costs the same as a wrong password.
        """
        if not plain:
            # bcrypt-pbkdf rejects empty input; no stored hash was made from one.
            self.hash(_TIMING_DUMMY)
            return False
        computed = self.hash(plain)
        return hmac.compare_digest(computed.encode("ascii"), (stored or "").encode("utf-8"))

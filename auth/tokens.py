"""
auth/tokens.py -- Bearer token issuance and validation.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only iat, exp and a random jti --
       no identity. The guard re-derives the identity by looking the token up
       in the identity store, so a token that has been overwritten by a newer
       login stops working even before it expires.

  Lifetime: fixed 10 minutes (ACCESS_TOKEN_TTL_SECONDS). Not configurable.

  jti: two tokens minted in the same second would otherwise be byte-identical,
       which breaks the one-row-per-token lookup. A random nonce keeps every
       issued token unique.

  Messages: validate() separates exactly two user-visible outcomes. An expired
       token says so, because logging in again fixes it. Every other failure
       (malformed, tampered, wrong algorithm, missing claims) gets the same
       generic server message, so a caller cannot tell which check failed.

  Expiry is checked here against an injectable clock rather than inside
  jwt.decode(), so tests can pin "now" to the second.

Layer rule: no imports from api/ or core/. The secret is passed in at
construction by the application lifespan.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from jose import JWTError, jwt

from auth.errors import SERVER_ERROR_MESSAGE, SigningError

logger = logging.getLogger("landinggate.auth")

ACCESS_TOKEN_TTL_SECONDS = 10 * 60
EXPIRED_MESSAGE = "Your session has expired, please log in again"

_ALGORITHM = "HS256"


def _utc_now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


class TokenState(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class TokenCheck:
    """Outcome of TokenService.validate(). message is safe to show the client."""

    state: TokenState
    message: str

    @property
    def ok(self) -> bool:
        return self.state is TokenState.VALID


_VALID = TokenCheck(TokenState.VALID, "OK")
_EXPIRED = TokenCheck(TokenState.EXPIRED, EXPIRED_MESSAGE)
_INVALID = TokenCheck(TokenState.INVALID, SERVER_ERROR_MESSAGE)


class TokenService:
    """Sign and verify time-bounded bearer tokens.

    Usage:
        tokens = TokenService(secret=settings.secret_key)
        token = tokens.issue()
        tokens.validate(token).ok   # True for the next 10 minutes
    """

    def __init__(self, secret: str, clock: Callable[[], int] = _utc_now_ts) -> None:
        self._secret = secret
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return ACCESS_TOKEN_TTL_SECONDS

    def issue(self) -> str:
        """Return a signed token valid for ACCESS_TOKEN_TTL_SECONDS.

        Raises SigningError if the secret is unavailable or jose cannot sign.
        """
        if not self._secret:
            raise SigningError("signing secret is not configured")
        now = self._clock()
        claims = {
            "iat": now,
            "exp": now + ACCESS_TOKEN_TTL_SECONDS,
            "jti": secrets.token_urlsafe(16),
        }
        try:
            return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)
        except JWTError as exc:
            raise SigningError(str(exc)) from exc

    def validate(self, token: str) -> TokenCheck:
        """Verify signature, algorithm and expiry.

        A token is still valid at exactly exp and expired from exp + 1.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            return _INVALID

        exp = payload.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool) or "iat" not in payload:
            return _INVALID
        if self._clock() > exp:
            return _EXPIRED
        return _VALID

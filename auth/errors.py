"""
auth/errors.py -- Error taxonomy for the access-control layer.

Services raise AuthError subclasses; api/main.py maps each one to its HTTP
status in a single exception handler, so route code never builds error
responses by hand.

  ValidationError  400  client input breaks a stated rule; message is safe to show
  Unauthorized     401  bad credentials, bad/expired token, missing role
  Conflict         409  the identity is already registered
  ServerError      500  store, hashing or signing failure; fixed generic message

Infrastructure failures (StoreError, SigningError, HashingError) are raised by
the adapters and never reach the client directly -- services log them and
re-raise as ServerError. DuplicateIdentity is the one StoreError services
turn into Conflict instead.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

SERVER_ERROR_MESSAGE = "Something went wrong on the server side"


class AuthError(Exception):
    """Base class for errors that are safe to turn into an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"


class Unauthorized(AuthError):
    status_code = 401
    code = "unauthorized"


class Conflict(AuthError):
    status_code = 409
    code = "conflict"


class ServerError(AuthError):
    """Always carries the generic message; the real cause goes to the log."""

    status_code = 500
    code = "internal_error"

    def __init__(self) -> None:
        super().__init__(SERVER_ERROR_MESSAGE)


# ---------------------------------------------------------------------------
# Infrastructure errors -- never rendered to clients
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """The identity store could not complete an operation."""


class DuplicateIdentity(StoreError):
    """An insert lost a race: another row already holds the phone pair."""


class SigningError(Exception):
    """A token could not be signed."""


class HashingError(Exception):
    """A password could not be hashed."""

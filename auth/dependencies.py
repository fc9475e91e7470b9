"""
auth/dependencies.py -- FastAPI Depends() helpers for the access guard.

require_principal() is the transport half of the guard: it pulls the bearer
token out of the Authorization header, hands it and the request path to the
AuthGuard on app.state, and binds the admitted Principal to
request.state.principal for downstream handlers.

Attach it to a whole router so every route beneath it is guarded:

    router = APIRouter(dependencies=[Depends(require_principal)])

Handlers that need the caller read it back with get_principal().

Layer rule: may import from fastapi (for Request) because this module is
part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Unauthorized
from auth.guard import NOT_LOGGED_IN_MESSAGE, AuthGuard
from auth.models import Principal


def bearer_token(request: Request) -> str:
    """Return the token from 'Authorization: Bearer <token>' or raise Unauthorized."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized(NOT_LOGGED_IN_MESSAGE)
    return token


def require_principal(request: Request) -> Principal:
    """Run the guard for this request. Raises an AuthError subclass on rejection."""
    guard: AuthGuard = request.app.state.auth_guard
    principal = guard.admit(bearer_token(request), request.url.path)
    request.state.principal = principal
    return principal


def get_principal(request: Request) -> Principal:
    """Return the Principal bound by require_principal().

    Raises Unauthorized if the route was mounted without the guard, so a
    wiring mistake fails closed.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthorized(NOT_LOGGED_IN_MESSAGE)
    return principal

"""
auth/guard.py -- Per-request admission control for protected routes.

AuthGuard.admit() runs the whole check for one request and either returns a
Principal or raises an AuthError subclass:

  1. find_by_token(token)        store failure  -> ServerError
                                 no row         -> Unauthorized ("please log in")
                                 several rows   -> ServerError (invariant broken)
  2. TokenService.validate()     expired        -> Unauthorized ("session expired")
                                 anything else  -> Unauthorized (generic)
  3. roles_for(identity.id)      store failure  -> ServerError
  4. is_permitted(roles, path)   denied         -> Unauthorized ("no permissions")

The identity lookup runs before signature validation, so a well-signed token
that no identity holds any more (overwritten by a newer login) reports
"not logged in".

Header extraction is the transport's job -- see auth/dependencies.py.
The guard performs no writes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import ServerError, StoreError, Unauthorized
from auth.models import Principal
from auth.permissions import ProtectedPathTable, is_permitted
from auth.store import IdentityStore
from auth.tokens import TokenService

logger = logging.getLogger("landinggate.auth")

NOT_LOGGED_IN_MESSAGE = "You are not authorized, please log in"
FORBIDDEN_MESSAGE = "You do not have permissions to access this page"


class AuthGuard:
    """Combine token lookup, token validation and path authorization.

    The path table is passed in rather than read from global state, so a
    reload() on the table is picked up by the next request without touching
    the guard.
    """

    def __init__(self, store: IdentityStore, tokens: TokenService, table: ProtectedPathTable) -> None:
        self.store = store
        self.tokens = tokens
        self.table = table

    def admit(self, token: str, path: str) -> Principal:
        try:
            matches = self.store.find_by_token(token)
        except StoreError:
            logger.exception("Identity lookup by token failed")
            raise ServerError() from None

        if not matches:
            raise Unauthorized(NOT_LOGGED_IN_MESSAGE)
        if len(matches) > 1:
            logger.error(
                "Session token shared by %d identities (ids=%s); refusing request",
                len(matches),
                [m.id for m in matches],
            )
            raise ServerError()
        identity = matches[0]

        check = self.tokens.validate(token)
        if not check.ok:
            raise Unauthorized(check.message, code=f"token_{check.state.value}")

        try:
            roles = frozenset(self.store.roles_for(identity.id))
        except StoreError:
            logger.exception("Role lookup failed for identity %s", identity.id)
            raise ServerError() from None

        if not is_permitted(roles, path, self.table):
            logger.info("Identity %s denied %s (roles=%s)", identity.id, path, sorted(roles))
            raise Unauthorized(FORBIDDEN_MESSAGE, code="forbidden")

        return Principal(identity=identity, roles=roles)

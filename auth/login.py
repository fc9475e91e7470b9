"""
auth/login.py -- Credential login.

The response never tells the caller which half of the credentials was wrong.
Unknown phone, unknown email, an unverified placeholder without a password,
and a wrong password all produce the same Unauthorized message, and all of
them run the password hash so the timing matches too.
"""

from __future__ import annotations

import logging

from auth.errors import HashingError, ServerError, SigningError, StoreError, Unauthorized
from auth.models import Identity, IssuedToken, LoginForm
from auth.passwords import PasswordHasher
from auth.store import IdentityStore
from auth.tokens import TokenService

logger = logging.getLogger("landinggate.auth")

BAD_CREDENTIALS_MESSAGE = "The login or password or both are incorrect"


class LoginService:
    def __init__(self, store: IdentityStore, tokens: TokenService, hasher: PasswordHasher) -> None:
        self.store = store
        self.tokens = tokens
        self.hasher = hasher

    def _lookup(self, form: LoginForm) -> Identity | None:
        if form.phone_country_code is not None and form.phone_number:
            matches = self.store.find_by_phone(form.phone_country_code, form.phone_number)
        elif form.email:
            matches = self.store.find_by_email(form.email)
        else:
            matches = []
        return matches[0] if matches else None

    def login(self, form: LoginForm) -> IssuedToken:
        """Verify credentials and issue a fresh token, replacing any previous one.

        Raises Unauthorized or ServerError.
        """
        try:
            identity = self._lookup(form)
        except StoreError:
            logger.exception("Identity lookup failed during login")
            raise ServerError() from None

        stored_hash = identity.password_hash if identity is not None else None
        try:
            matched = self.hasher.matches(form.password, stored_hash)
        except HashingError:
            logger.exception("Password hashing failed during login")
            raise ServerError() from None

        if not matched or identity is None:
            raise Unauthorized(BAD_CREDENTIALS_MESSAGE, code="bad_credentials")

        try:
            token = self.tokens.issue()
        except SigningError:
            logger.exception("Token signing failed for identity %s", identity.id)
            raise ServerError() from None
        try:
            self.store.update(identity.id, session_token=token, verified=True)
        except StoreError:
            logger.exception("Could not store session token for identity %s", identity.id)
            raise ServerError() from None

        logger.info("Identity %s logged in", identity.id)
        return IssuedToken(token=token, identity_id=identity.id, expires_in=self.tokens.ttl_seconds)

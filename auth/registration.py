"""
auth/registration.py -- Registration and pre-registration (subscribe) flows.

Identity state machine:

    (none) --subscribe--> unverified --register--> verified
    (none) --register---------------------------> verified
    verified --register--> Conflict

register() is idempotent for unverified identities: a second attempt with
the same phone pair updates the existing row in place instead of inserting a
duplicate. That is what lets a half-finished signup (a subscribe-form row, or
a register call that failed after the insert) be completed later.

The steps after the identity write (role assignment, token issue, final
update) are not wrapped in a transaction. If one fails the identity is left
unverified, and the next register() for the same phone re-claims it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import (
    Conflict,
    DuplicateIdentity,
    HashingError,
    ServerError,
    SigningError,
    StoreError,
    ValidationError,
)
from auth.models import Identity, IssuedToken, RegistrationForm, SubscriptionForm
from auth.passwords import PasswordHasher
from auth.store import EMAIL_MAX_LENGTH, NAME_MAX_LENGTH, PHONE_MAX_LENGTH, IdentityStore
from auth.tokens import TokenService

logger = logging.getLogger("landinggate.auth")

ALREADY_REGISTERED_MESSAGE = "The user has already been registered"
PHONE_TAKEN_MESSAGE = "The user with this phone number already exists"
EMAIL_TAKEN_MESSAGE = "The user with this email already exists"

PASSWORD_MIN_LENGTH = 7
PASSWORD_MAX_LENGTH = 30


# ---------------------------------------------------------------------------
# Form validation -- first failing rule wins, in this order
# ---------------------------------------------------------------------------


def _check_name(name: str) -> None:
    if not name:
        raise ValidationError('The "name" field cannot be empty')
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"The name cannot be longer than {NAME_MAX_LENGTH} characters")


def _check_email(email: str | None, *, required: bool) -> None:
    if not email:
        if required:
            raise ValidationError("Email cannot be empty")
        return
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValidationError(f"Email cannot be longer than {EMAIL_MAX_LENGTH} characters")
    if "@" not in email:
        raise ValidationError('Email has to contain "@" symbol')
    if "." not in email:
        raise ValidationError('Email has to contain "." symbol')


def _check_phone(code: int, number: str) -> None:
    if not 1 <= code <= 999:
        raise ValidationError("The phone number code is invalid")
    if len(number) < 4:
        raise ValidationError("The phone number is too short")
    if len(number) > PHONE_MAX_LENGTH:
        raise ValidationError("The phone number is too long")
    # str.isdigit() also accepts superscripts and other non-decimal digits.
    if not all(ch in "0123456789" for ch in number):
        raise ValidationError("The phone number is not valid")


def _check_password(password: str | None) -> None:
    if password is None or password == "":
        raise ValidationError("The password cannot be absent")
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"The password length must be between {PASSWORD_MIN_LENGTH} and "
            f"{PASSWORD_MAX_LENGTH} characters inclusive"
        )
    if not password.isascii():
        raise ValidationError("The password must contain only ASCII characters")


def validate_registration(form: RegistrationForm) -> None:
    """Raise ValidationError for the first rule the form breaks."""
    _check_name(form.name)
    _check_email(form.email, required=True)
    _check_phone(form.phone_country_code, form.phone_number)
    _check_password(form.password)


def validate_subscription(form: SubscriptionForm) -> None:
    """Like validate_registration, but email is optional and there is no password."""
    _check_name(form.name)
    _check_email(form.email, required=False)
    _check_phone(form.phone_country_code, form.phone_number)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RegistrationService:
    def __init__(
        self,
        store: IdentityStore,
        tokens: TokenService,
        hasher: PasswordHasher,
        default_role: str = "user",
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.hasher = hasher
        self.default_role = default_role

    def register(self, form: RegistrationForm) -> IssuedToken:
        """Create or claim an identity, give it the default role, and log it in.

        Raises ValidationError, Conflict or ServerError.
        """
        validate_registration(form)

        try:
            password_hash = self.hasher.hash(form.password)
        except HashingError:
            logger.exception("Password hashing failed during registration")
            raise ServerError() from None

        try:
            existing = self.store.find_by_phone(form.phone_country_code, form.phone_number)
            current = existing[0] if existing else None
            if current is not None and current.verified:
                raise Conflict(ALREADY_REGISTERED_MESSAGE)

            owners = self.store.find_by_email(form.email)
            if any(current is None or owner.id != current.id for owner in owners):
                raise Conflict(EMAIL_TAKEN_MESSAGE)

            if current is not None:
                self.store.update(
                    current.id,
                    name=form.name,
                    email=form.email,
                    password_hash=password_hash,
                )
                identity_id = current.id
                logger.info("Claimed unverified identity %s", identity_id)
            else:
                created = self.store.insert(
                    Identity(
                        name=form.name,
                        email=form.email,
                        phone_country_code=form.phone_country_code,
                        phone_number=form.phone_number,
                        password_hash=password_hash,
                    )
                )
                identity_id = created.id
                logger.info("Created identity %s", identity_id)

            role_id = self.store.role_id(self.default_role)
            if role_id is None:
                logger.error("Default role %r is not seeded in the role table", self.default_role)
                raise ServerError()
            self.store.insert_role(identity_id, role_id)
        except DuplicateIdentity:
            # A concurrent registration inserted this phone between lookup and insert.
            logger.info("Lost registration race for phone %s/%s", form.phone_country_code, form.phone_number)
            raise Conflict(ALREADY_REGISTERED_MESSAGE) from None
        except StoreError:
            logger.exception("Identity store failure during registration")
            raise ServerError() from None

        return self._issue(identity_id)

    def subscribe(self, form: SubscriptionForm) -> Identity:
        """Record an unverified identity from the lightweight signup form.

        The row has no password and no role; register() completes it later.
        Raises ValidationError, Conflict or ServerError.
        """
        validate_subscription(form)
        try:
            if self.store.find_by_phone(form.phone_country_code, form.phone_number):
                raise Conflict(PHONE_TAKEN_MESSAGE)
            if form.email and self.store.find_by_email(form.email):
                raise Conflict(EMAIL_TAKEN_MESSAGE)
            created = self.store.insert(
                Identity(
                    name=form.name,
                    email=form.email or None,
                    phone_country_code=form.phone_country_code,
                    phone_number=form.phone_number,
                )
            )
        except DuplicateIdentity:
            raise Conflict(PHONE_TAKEN_MESSAGE) from None
        except StoreError:
            logger.exception("Identity store failure during subscription")
            raise ServerError() from None
        logger.info("Subscribed unverified identity %s", created.id)
        return created

    def _issue(self, identity_id: int) -> IssuedToken:
        try:
            token = self.tokens.issue()
        except SigningError:
            logger.exception("Token signing failed for identity %s", identity_id)
            raise ServerError() from None
        try:
            self.store.update(identity_id, session_token=token, verified=True)
        except StoreError:
            logger.exception("Could not store session token for identity %s", identity_id)
            raise ServerError() from None
        return IssuedToken(token=token, identity_id=identity_id, expires_in=self.tokens.ttl_seconds)

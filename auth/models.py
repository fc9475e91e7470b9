"""
auth/models.py -- Domain dataclasses for access-control entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only carry shape between them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Identity:
    """A user record with credentials and verification state.

    (phone_country_code, phone_number) is the natural key -- unique across all
    rows. An identity created by the subscribe form has no password_hash and
    verified=False until a full registration claims it.

    session_token holds the only live bearer token for this identity. Issuing
    a new token overwrites it, which invalidates the previous one.
    """

    name: str
    phone_country_code: int
    phone_number: str
    email: str | None = None
    id: int | None = None
    password_hash: str | None = None
    session_token: str | None = None
    verified: bool = False


@dataclass(frozen=True)
class Principal:
    """The identity admitted by the guard, with its role names resolved."""

    identity: Identity
    roles: frozenset[str] = field(default_factory=frozenset)


@dataclass
class RegistrationForm:
    """Fields submitted to the full registration endpoint."""

    name: str
    phone_country_code: int
    phone_number: str
    email: str | None = None
    password: str | None = None


@dataclass
class SubscriptionForm:
    """Fields submitted to the lightweight pre-registration (insert) endpoint."""

    name: str
    phone_country_code: int
    phone_number: str
    email: str | None = None


@dataclass
class LoginForm:
    """Login credentials. The phone pair wins over email when both are given."""

    password: str
    email: str | None = None
    phone_country_code: int | None = None
    phone_number: str | None = None


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed bearer token and the identity it was stored on."""

    token: str
    identity_id: int
    expires_in: int

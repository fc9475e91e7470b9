"""
API request and response models for Landing Gate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Registration, login and subscription take form-encoded bodies, so their
inputs are declared as Form() parameters on the routes rather than here.
"""

from collections.abc import Iterable
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity

# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    """Body of every error response and of plain acknowledgements.

    code is a stable machine-readable identifier; message is for humans.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    code: Optional[str] = None


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/register and POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    message: str = "Successfully authorized"
    token: str
    token_type: str = "bearer"
    expires_in: int


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Public view of an identity. Never includes the password hash or token."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: Optional[str]
    phone_country_code: int
    phone_number: str
    verified: bool
    roles: list[str]

    @classmethod
    def from_identity(cls, identity: Identity, roles: Iterable[str]) -> "IdentityResponse":
        return cls(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            phone_country_code=identity.phone_country_code,
            phone_number=identity.phone_number,
            verified=identity.verified,
            roles=sorted(roles),
        )


# ---------------------------------------------------------------------------
# Protected path table
# ---------------------------------------------------------------------------


class ProtectedPathsBody(BaseModel):
    """Request and response body for the protected path table admin routes."""

    paths: dict[str, list[str]] = Field(
        description="Path prefix -> role names allowed at and beneath that prefix.",
    )

"""
api/routes/v1/auth.py -- Registration, login and account endpoints.

Routes:
  POST /api/v1/auth/register   -- full registration; returns a bearer token
  POST /api/v1/auth/login      -- phone or email + password; returns a bearer token
  POST /api/v1/auth/insert     -- lightweight pre-registration (unverified identity)
  GET  /api/v1/auth/me         -- current identity and roles (guarded)

All three POST routes take application/x-www-form-urlencoded bodies and are
rate-limited per client IP.

Errors: services raise auth.errors.AuthError subclasses; the handler in
api/main.py turns them into {"message", "code"} bodies with the right status.
Token responses carry Cache-Control: no-store.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import IdentityResponse, MessageResponse, TokenResponse
from auth.dependencies import require_principal
from auth.login import LoginService
from auth.models import IssuedToken, LoginForm, Principal, RegistrationForm, SubscriptionForm
from auth.registration import RegistrationService

# Auth policy:
# - POST /api/v1/auth/register: public -- creates the credentials
# - POST /api/v1/auth/login:    public -- exchanges credentials for a token
# - POST /api/v1/auth/insert:   public -- pre-registration form
# - GET  /api/v1/auth/me:       guarded (require_principal)
router = APIRouter()


def _token_response(issued: IssuedToken) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(token=issued.token, expires_in=issued.expires_in).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(AUTH_RATE_LIMIT)  # must be ABOVE @router so FastAPI introspects the plain function
@router.post("/auth/register", response_model=TokenResponse)
def register(
    request: Request,
    phone_country_code: int = Form(...),
    name: str = Form(default=""),
    email: str | None = Form(default=None),
    phone_number: str = Form(default=""),
    password: str | None = Form(default=None),
) -> JSONResponse:
    """Register a new identity, or complete an unverified one with the same phone.

    400 on the first form rule broken, 409 if the phone is already registered
    or the email belongs to someone else.
    """
    service: RegistrationService = request.app.state.registration
    issued = service.register(
        RegistrationForm(
            name=name.strip(),
            email=email.strip() if email else None,
            phone_country_code=phone_country_code,
            phone_number=phone_number.strip(),
            password=password,
        )
    )
    return _token_response(issued)


@limiter.limit(AUTH_RATE_LIMIT)  # must be ABOVE @router so FastAPI introspects the plain function
@router.post("/auth/login", response_model=TokenResponse)
def login(
    request: Request,
    password: str = Form(default=""),
    email: str | None = Form(default=None),
    phone_country_code: int | None = Form(default=None),
    phone_number: str | None = Form(default=None),
) -> JSONResponse:
    """Exchange credentials for a fresh token. Any previous token stops working.

    Wrong password, unknown phone and unknown email all return the same 401.
    """
    service: LoginService = request.app.state.login
    issued = service.login(
        LoginForm(
            password=password,
            email=email.strip() if email else None,
            phone_country_code=phone_country_code,
            phone_number=phone_number.strip() if phone_number else None,
        )
    )
    return _token_response(issued)


@limiter.limit(AUTH_RATE_LIMIT)  # must be ABOVE @router so FastAPI introspects the plain function
@router.post("/auth/insert", response_model=MessageResponse)
def insert(
    request: Request,
    phone_country_code: int = Form(...),
    name: str = Form(default=""),
    email: str | None = Form(default=None),
    phone_number: str = Form(default=""),
) -> MessageResponse:
    """Record an unverified identity that a later registration can claim."""
    service: RegistrationService = request.app.state.registration
    service.subscribe(
        SubscriptionForm(
            name=name.strip(),
            email=email.strip() if email else None,
            phone_country_code=phone_country_code,
            phone_number=phone_number.strip(),
        )
    )
    return MessageResponse(message="The subscription was successful!")


# ---------------------------------------------------------------------------
# Guarded endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=IdentityResponse)
def me(principal: Principal = Depends(require_principal)) -> IdentityResponse:
    """Return the identity that owns the bearer token, with its roles."""
    return IdentityResponse.from_identity(principal.identity, principal.roles)

"""
tests/test_api_routes.py -- Integration tests for the auth and admin routes.

These tests exercise the full stack: FastAPI routing -> form parsing ->
RegistrationService/LoginService -> IdentityStore, and for guarded routes
require_principal -> AuthGuard -> path table. Unit tests cover each service
in isolation; these check status codes, bodies and headers on the wire.

Coverage:
  - Register: 200 + token + no-store, 400 on a broken rule, 409 on a verified
    phone, 400 on an overlong phone, 422 on a missing field
  - Subscribe (insert) then register keeps the same identity id
  - Login: 200 by phone and email, identical 401 for wrong password and
    unknown phone, old token stops working after a new login
  - Guard: 401 without/with malformed header, "please log in" for an unknown
    token, 401 forbidden for a non-admin on /api/v1/admin
  - Admin: identity lookup, 404, protected path table read and replace
  - IdentityResponse.from_identity: any iterable of roles becomes a sorted list

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, store) -- the admin identity is phone
    1/9990000001 with password "adminpass1" and roles {"admin", "user"}.

The DB is shared across this module, so every test registers its own phone.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.models import IdentityResponse
from auth.errors import SERVER_ERROR_MESSAGE
from auth.guard import FORBIDDEN_MESSAGE, NOT_LOGGED_IN_MESSAGE
from auth.login import BAD_CREDENTIALS_MESSAGE
from auth.models import Identity
from auth.registration import ALREADY_REGISTERED_MESSAGE
from auth.store import IdentityStore

ApiClient = tuple[TestClient, str, IdentityStore]


def _register(client: TestClient, phone: str, **overrides):
    data = {
        "name": "John",
        "email": f"{phone}@x.com",
        "phone_country_code": "1",
        "phone_number": phone,
        "password": "qwerty123",
    }
    data.update(overrides)
    return client.post("/api/v1/auth/register", data=data)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterRoute:
    def test_register_returns_token(self, api_client: ApiClient) -> None:
        """The John scenario: a fresh phone registers and gets a usable token."""
        client, _token, _store = api_client
        resp = _register(client, "1111111111", email="j@x.com")
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "Successfully authorized"
        assert body["token"]
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 600
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_validation_error(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = _register(client, "1000000001", password="short")
        assert resp.status_code == 400
        assert resp.json() == {
            "message": "The password length must be between 7 and 30 characters inclusive",
            "code": "validation_error",
        }

    def test_register_verified_phone_conflicts(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        assert _register(client, "1000000002").status_code == 200
        resp = _register(client, "1000000002", name="Someone", email="else@x.com", password="different1")
        assert resp.status_code == 409
        assert resp.json()["message"] == ALREADY_REGISTERED_MESSAGE

    def test_register_missing_country_code(self, api_client: ApiClient) -> None:
        """Request-shape errors are 422, not 400."""
        client, _token, _store = api_client
        resp = client.post(
            "/api/v1/auth/register",
            data={"name": "John", "email": "a@x.com", "phone_number": "1000000003", "password": "qwerty123"},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "request_validation_error"

    def test_subscribe_then_register_keeps_id(self, api_client: ApiClient) -> None:
        client, _token, store = api_client
        resp = client.post(
            "/api/v1/auth/insert",
            data={"name": "Jane", "phone_country_code": "1", "phone_number": "1000000004"},
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == "The subscription was successful!"
        [placeholder] = store.find_by_phone(1, "1000000004")
        assert placeholder.verified is False

        assert _register(client, "1000000004", name="Jane").status_code == 200
        [claimed] = store.find_by_phone(1, "1000000004")
        assert claimed.id == placeholder.id
        assert claimed.verified is True

    def test_subscribe_duplicate_phone(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        data = {"name": "Jane", "phone_country_code": "1", "phone_number": "1000000005"}
        assert client.post("/api/v1/auth/insert", data=data).status_code == 200
        assert client.post("/api/v1/auth/insert", data=data).status_code == 409

    def test_register_overlong_phone(self, api_client: ApiClient) -> None:
        """A number wider than the phone column is a 400, never a store error."""
        client, _token, store = api_client
        phone = "1" * 33
        resp = _register(client, phone, email="long@x.com")
        assert resp.status_code == 400
        assert resp.json() == {"message": "The phone number is too long", "code": "validation_error"}
        assert store.find_by_phone(1, phone) == []


class TestLoginRoute:
    def test_login_by_phone(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        _register(client, "2000000001")
        resp = client.post(
            "/api/v1/auth/login",
            data={"phone_country_code": "1", "phone_number": "2000000001", "password": "qwerty123"},
        )
        assert resp.status_code == 200
        assert resp.json()["token"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_by_email(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        _register(client, "2000000002")
        resp = client.post("/api/v1/auth/login", data={"email": "2000000002@x.com", "password": "qwerty123"})
        assert resp.status_code == 200

    def test_wrong_password_and_unknown_phone_match(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        _register(client, "2000000003")
        wrong = client.post(
            "/api/v1/auth/login",
            data={"phone_country_code": "1", "phone_number": "2000000003", "password": "wrong"},
        )
        unknown = client.post(
            "/api/v1/auth/login",
            data={"phone_country_code": "1", "phone_number": "2999999999", "password": "qwerty123"},
        )
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["message"] == BAD_CREDENTIALS_MESSAGE

    def test_new_login_invalidates_old_token(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        first = _register(client, "2000000004").json()["token"]
        second = client.post(
            "/api/v1/auth/login", data={"email": "2000000004@x.com", "password": "qwerty123"}
        ).json()["token"]

        old = client.get("/api/v1/auth/me", headers=_bearer(first))
        assert old.status_code == 401
        assert old.json()["message"] == NOT_LOGGED_IN_MESSAGE
        assert client.get("/api/v1/auth/me", headers=_bearer(second)).status_code == 200


class TestGuard:
    def test_me_without_header(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["message"] == NOT_LOGGED_IN_MESSAGE

    def test_me_with_wrong_scheme(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401

    def test_me_unknown_token(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("not-a-real-token"))
        assert resp.status_code == 401
        assert resp.json()["message"] == NOT_LOGGED_IN_MESSAGE

    def test_me_returns_identity(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        token = _register(client, "3000000001", name="Mary").json()["token"]
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "Mary"
        assert body["verified"] is True
        assert body["roles"] == ["user"]
        assert "password_hash" not in body
        assert "session_token" not in body

    def test_stored_garbage_token_is_generic(self, api_client: ApiClient) -> None:
        """A token that resolves to an identity but fails verification leaks no detail."""
        client, _token, store = api_client
        _register(client, "3000000002")
        [identity] = store.find_by_phone(1, "3000000002")
        store.update(identity.id, session_token="forged.token.value")
        resp = client.get("/api/v1/auth/me", headers=_bearer("forged.token.value"))
        assert resp.status_code == 401
        assert resp.json()["message"] == SERVER_ERROR_MESSAGE

    def test_non_admin_forbidden_on_admin_path(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        token = _register(client, "3000000003").json()["token"]
        resp = client.get("/api/v1/admin/identities/1", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json() == {"message": FORBIDDEN_MESSAGE, "code": "forbidden"}


class TestAdminRoutes:
    def test_get_identity(self, api_client: ApiClient) -> None:
        client, token, store = api_client
        _register(client, "4000000001", name="Lookup")
        [identity] = store.find_by_phone(1, "4000000001")
        resp = client.get(f"/api/v1/admin/identities/{identity.id}", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["name"] == "Lookup"
        assert resp.json()["roles"] == ["user"]

    def test_get_missing_identity(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/admin/identities/999999", headers=_bearer(token))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_list_protected_paths(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/admin/protected-paths", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"paths": {"/api/v1/admin": ["admin"]}}

    def test_replace_protected_paths(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        user_token = _register(client, "4000000002").json()["token"]
        try:
            resp = client.put(
                "/api/v1/admin/protected-paths",
                headers=_bearer(token),
                json={"paths": {"/api/v1/admin": ["admin"], "/api/v1/auth/me": ["admin"]}},
            )
            assert resp.status_code == 200
            assert resp.json()["paths"]["/api/v1/auth/me"] == ["admin"]
            assert client.get("/api/v1/auth/me", headers=_bearer(user_token)).status_code == 401
        finally:
            client.put(
                "/api/v1/admin/protected-paths",
                headers=_bearer(token),
                json={"paths": {"/api/v1/admin": ["admin"]}},
            )
        assert client.get("/api/v1/auth/me", headers=_bearer(user_token)).status_code == 200

    def test_root_entry_rejected(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.put(
            "/api/v1/admin/protected-paths",
            headers=_bearer(token),
            json={"paths": {"/": ["admin"]}},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_path_table"
        listed = client.get("/api/v1/admin/protected-paths", headers=_bearer(token)).json()
        assert listed == {"paths": {"/api/v1/admin": ["admin"]}}


class TestIdentityResponse:
    def _identity(self) -> Identity:
        return Identity(
            id=7,
            name="John",
            email="j@x.com",
            phone_country_code=1,
            phone_number="1111111111",
            password_hash="secret-hash",
            session_token="live-token",
            verified=True,
        )

    def test_roles_from_frozenset(self) -> None:
        body = IdentityResponse.from_identity(self._identity(), frozenset({"user", "admin"}))
        assert body.roles == ["admin", "user"]

    def test_roles_from_generator(self) -> None:
        body = IdentityResponse.from_identity(self._identity(), (title for title in ("user", "admin")))
        assert body.roles == ["admin", "user"]

    def test_credentials_not_exposed(self) -> None:
        dumped = IdentityResponse.from_identity(self._identity(), []).model_dump()
        assert "password_hash" not in dumped
        assert "session_token" not in dumped
        assert dumped["id"] == 7

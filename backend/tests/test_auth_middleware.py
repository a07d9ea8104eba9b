"""
Authorization Gate Tests

Bearer token verification and role checks, directly and through FastAPI
dependencies.

Run with: pytest tests/test_auth_middleware.py -v
"""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from identity.errors import InvalidTokenError, TokenExpiredError
from identity.models import Role
from identity.schemas import AuthUser
from middleware.auth import (
    AuthorizationGate,
    RoleChecker,
    get_authorization_gate,
    get_current_user,
    get_current_user_required,
    require_admin,
)


@pytest.fixture
def gate(codec):
    return AuthorizationGate(codec)


@pytest.fixture
def alice():
    return AuthUser(id="7d8f2f3e-6b1a-4c55-9d8e-0a1b2c3d4e5f", email="alice@x.com", role="employee")


@pytest.fixture
def bob():
    return AuthUser(id="2a6c1d3b-9e0f-4a7b-8c5d-6e7f8091a2b3", email="bob@x.com", role="admin")


@pytest.fixture
def client(gate):
    app = FastAPI()

    @app.get("/me")
    async def me(user: AuthUser = Depends(get_current_user_required)):
        return {"id": user.id, "email": user.email, "role": user.role}

    @app.get("/whoami")
    async def whoami(user=Depends(get_current_user)):
        return {"email": user.email if user else None}

    @app.get("/admin/approvals")
    async def approvals(user: AuthUser = Depends(require_admin)):
        return {"admin": user.email}

    @app.get("/staff")
    async def staff(user: AuthUser = Depends(RoleChecker([Role.ADMIN, "employee"]))):
        return {"email": user.email}

    app.dependency_overrides[get_authorization_gate] = lambda: gate
    return TestClient(app)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestGate:
    """verify(token) -> principal, authorize(principal, roles) -> bool"""

    def test_verify_returns_principal(self, gate, codec, alice):
        principal = gate.verify(codec.mint_access_token(alice))

        assert principal.id == alice.id
        assert principal.email == alice.email
        assert principal.role == "employee"

    def test_verify_missing_token(self, gate):
        with pytest.raises(InvalidTokenError):
            gate.verify(None)

    def test_verify_refresh_token_rejected(self, gate, codec, alice):
        with pytest.raises(InvalidTokenError):
            gate.verify(codec.mint_refresh_token(alice))

    def test_verify_expired(self, gate, codec, clock, alice):
        token = codec.mint_access_token(alice)
        clock.advance(minutes=16)

        with pytest.raises(TokenExpiredError):
            gate.verify(token)

    def test_authorize(self, alice, bob):
        assert AuthorizationGate.authorize(bob, [Role.ADMIN])
        assert not AuthorizationGate.authorize(alice, [Role.ADMIN])
        assert AuthorizationGate.authorize(alice, ["admin", "employee"])
        assert not AuthorizationGate.authorize(alice, [])


class TestDependencies:
    """401 for a missing or bad token, 403 for a role outside the allow-list."""

    def test_no_token(self, client):
        response = client.get("/me")

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_valid_token(self, client, codec, alice):
        response = client.get("/me", headers=bearer(codec.mint_access_token(alice)))

        assert response.status_code == 200
        assert response.json() == {"id": alice.id, "email": "alice@x.com", "role": "employee"}

    def test_invalid_token(self, client):
        response = client.get("/me", headers=bearer("forged.token.value"))

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    def test_expired_token(self, client, codec, clock, alice):
        token = codec.mint_access_token(alice)
        clock.advance(minutes=15)

        response = client.get("/me", headers=bearer(token))

        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    def test_optional_user(self, client, codec, alice):
        assert client.get("/whoami").json() == {"email": None}
        assert client.get("/whoami", headers=bearer("garbage")).json() == {"email": None}
        assert client.get("/whoami", headers=bearer(codec.mint_access_token(alice))).json() == {
            "email": "alice@x.com"
        }

    def test_admin_allowed(self, client, codec, bob):
        response = client.get("/admin/approvals", headers=bearer(codec.mint_access_token(bob)))

        assert response.status_code == 200
        assert response.json() == {"admin": "bob@x.com"}

    def test_employee_forbidden(self, client, codec, alice):
        response = client.get("/admin/approvals", headers=bearer(codec.mint_access_token(alice)))

        assert response.status_code == 403

    def test_role_checker_without_token(self, client):
        assert client.get("/admin/approvals").status_code == 401

    def test_mixed_role_list(self, client, codec, alice, bob):
        for user in (alice, bob):
            response = client.get("/staff", headers=bearer(codec.mint_access_token(user)))
            assert response.status_code == 200

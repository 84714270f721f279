"""
Authentication and authorization tests.

Verifies:
- Unauthenticated requests return 401 with the error envelope
- Non-admin users are denied admin operations (403)
- Login issues a token that authenticates later requests
- User management rules
"""

from datetime import datetime, timedelta, timezone

import pytest

from tabacaria.services.token_service import create_access_token, decode_access_token
from tabacaria.errors import AuthError


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("GET", "/api/clients"),
            ("GET", "/api/suppliers"),
            ("GET", "/api/dashboard"),
            ("GET", "/api/users/profile"),
            ("GET", "/api/users"),
        ],
    )
    def test_requires_token(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.json["success"] is False
        assert resp.json["message"] == "token not found"

    def test_malformed_header(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Token abc"})
        assert resp.status_code == 401
        assert resp.json["message"] == "token not found"

    def test_invalid_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json["message"] == "invalid token"

    def test_token_for_deleted_user(self, client, db_session, settings):
        token = create_access_token(4242, settings)
        resp = client.get("/api/products", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json["message"] == "invalid token"

    def test_expired_token(self, settings, admin_user):
        issued = datetime.now(timezone.utc) - timedelta(days=settings.jwt_expires_days + 1)
        token = create_access_token(admin_user.id, settings, now=issued)
        with pytest.raises(AuthError):
            decode_access_token(token, settings)

    def test_stack_included_outside_production(self, client, db_session):
        resp = client.get("/api/products")
        assert resp.json["stack"]

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"


class TestAdminGuard:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("POST", "/api/users"),
            ("DELETE", "/api/products/1"),
            ("DELETE", "/api/clients/1"),
            ("DELETE", "/api/suppliers/1"),
            ("PUT", "/api/sales/1/cancel"),
        ],
    )
    def test_seller_denied(self, client, seller_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=seller_headers)
        assert resp.status_code == 403
        assert resp.json["message"] == "Not authorized as administrator"


class TestLogin:

    def test_login_and_use_token(self, client, admin_user):
        resp = client.post("/api/users/login", json={"email": "ADMIN@tabacaria.com", "password": "123456"})
        assert resp.status_code == 200
        assert resp.json["user"]["email"] == "admin@tabacaria.com"
        assert "password_hash" not in resp.json["user"]

        token = resp.json["token"]
        profile = client.get("/api/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert profile.status_code == 200
        assert profile.json["user"]["is_admin"] is True
        assert profile.json["user"]["last_login_at"] is not None

    @pytest.mark.parametrize(
        "email,password",
        [("admin@tabacaria.com", "wrong"), ("nobody@tabacaria.com", "123456")],
    )
    def test_bad_credentials(self, client, admin_user, email, password):
        resp = client.post("/api/users/login", json={"email": email, "password": password})
        assert resp.status_code == 401
        assert resp.json["message"] == "Invalid email or password"

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/users/login", json={"email": "a@b.com"}).status_code == 400


class TestUserManagement:

    def test_admin_creates_user(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"name": "Caixa", "email": "caixa@tabacaria.com", "password": "segredo1"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["user"]["is_admin"] is False

        login = client.post("/api/users/login", json={"email": "caixa@tabacaria.com", "password": "segredo1"})
        assert login.status_code == 200

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "Curta", "email": "curta@tabacaria.com", "password": "123"},
            {"name": "Sem email", "password": "123456"},
            {"name": "Ruim", "email": "not-an-email", "password": "123456"},
            {"name": "Dup", "email": "admin@tabacaria.com", "password": "123456"},
        ],
    )
    def test_invalid_user(self, client, admin_headers, payload):
        assert client.post("/api/users", json=payload, headers=admin_headers).status_code == 400

    def test_profile_update(self, client, seller_headers):
        resp = client.put("/api/users/profile", json={"name": "Vendedor Um"}, headers=seller_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["name"] == "Vendedor Um"

    def test_profile_cannot_grant_admin(self, client, seller_headers):
        resp = client.put("/api/users/profile", json={"is_admin": True}, headers=seller_headers)
        assert resp.status_code == 400
        profile = client.get("/api/users/profile", headers=seller_headers)
        assert profile.json["user"]["is_admin"] is False

    def test_profile_password_change(self, client, seller_headers):
        client.put("/api/users/profile", json={"password": "nova-senha"}, headers=seller_headers)
        resp = client.post("/api/users/login", json={"email": "vendedor1@tabacaria.com", "password": "nova-senha"})
        assert resp.status_code == 200

    def test_cannot_delete_self(self, client, admin_user, admin_headers):
        resp = client.delete(f"/api/users/{admin_user.id}", headers=admin_headers)
        assert resp.status_code == 400

    def test_cannot_delete_user_with_sales(self, client, admin_headers, seller_user, seller_headers, make_product):
        product = make_product()
        client.post("/api/sales", json={"items": [{"product_id": product.id, "quantity": 1}]}, headers=seller_headers)
        assert client.delete(f"/api/users/{seller_user.id}", headers=admin_headers).status_code == 400

    def test_delete_unused_user(self, client, admin_headers, seller_user):
        resp = client.delete(f"/api/users/{seller_user.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json == {"deleted": True}
        assert client.get(f"/api/users/{seller_user.id}", headers=admin_headers).status_code == 404

    def test_list_users(self, client, admin_headers, seller_user):
        body = client.get("/api/users", headers=admin_headers).json
        assert body["total"] == 2
        assert {u["email"] for u in body["users"]} == {"admin@tabacaria.com", "vendedor1@tabacaria.com"}

"""
Authentication and user management tests.

Verifies:
- Unauthenticated requests return 401
- Login, logout and session revocation
- Employees denied admin-only operations (403)
- Last active admin protection
"""

import pytest

from stampshop.errors import ConflictError, ForbiddenError
from stampshop.extensions import db
from stampshop.services import session_service, stock_service, users_service
from stampshop.services.actor import SYSTEM_USERNAME, Actor, ensure_system_user

from conftest import ADMIN_PASSWORD, EMPLOYEE_PASSWORD


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("POST", "/api/users"),
            ("GET", "/api/products"),
            ("GET", "/api/categories"),
            ("POST", "/api/stock/adjust"),
            ("GET", "/api/agents"),
            ("GET", "/api/customers"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/invoices"),
            ("GET", "/api/statistics/dashboard"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestLogin:

    def test_login_and_me(self, client, admin):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["user"]["username"] == "admin"
        assert "password_hash" not in body["user"]

        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["role"] == "admin"

    def test_wrong_password(self, client, admin):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "wrong-pass"})
        assert resp.status_code == 401

    def test_missing_fields(self, client):
        resp = client.post("/api/auth/login", json={"username": "admin"})
        assert resp.status_code == 400

    def test_inactive_user_cannot_login(self, client, employee):
        employee.is_active = False
        db.session.commit()

        resp = client.post("/api/auth/login", json={"username": "nhanvien", "password": EMPLOYEE_PASSWORD})
        assert resp.status_code == 401

    def test_system_user_cannot_login(self, client, app):
        ensure_system_user()
        resp = client.post("/api/auth/login", json={"username": SYSTEM_USERNAME, "password": "anything"})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, admin_headers):
        assert client.post("/api/auth/logout", headers=admin_headers).status_code == 200
        assert client.get("/api/auth/me", headers=admin_headers).status_code == 401

    def test_self_registration_disabled(self, client):
        resp = client.post("/api/auth/register", json={"username": "x", "password": "secret123"})
        assert resp.status_code == 403


class TestSessions:

    def test_deactivation_revokes_sessions(self, admin, employee):
        _, token = session_service.create_session(employee.id)
        assert session_service.validate_session(token) is not None

        users_service.update_user(user_id=employee.id, patch={"is_active": False}, actor=Actor.from_user(admin))

        assert session_service.validate_session(token) is None

    def test_change_password_keeps_current_session(self, client, employee):
        login = client.post("/api/auth/login", json={"username": "nhanvien", "password": EMPLOYEE_PASSWORD})
        current = {"Authorization": f"Bearer {login.get_json()['token']}"}
        _, other_token = session_service.create_session(employee.id)

        resp = client.post(
            "/api/auth/change-password",
            json={"current_password": EMPLOYEE_PASSWORD, "new_password": "NewPass123"},
            headers=current,
        )
        assert resp.status_code == 200

        assert client.get("/api/auth/me", headers=current).status_code == 200
        assert session_service.validate_session(other_token) is None

    def test_change_password_wrong_current(self, client, employee_headers):
        resp = client.post(
            "/api/auth/change-password",
            json={"current_password": "not-it", "new_password": "NewPass123"},
            headers=employee_headers,
        )
        assert resp.status_code == 403


# =============================================================================
# USER MANAGEMENT
# =============================================================================


class TestEmployeeDeniedAdminOperations:

    def test_cannot_create_user(self, client, employee_headers):
        resp = client.post(
            "/api/users",
            json={"username": "x", "full_name": "X", "password": "secret123"},
            headers=employee_headers,
        )
        assert resp.status_code == 403

    def test_cannot_promote_self(self, client, employee, employee_headers):
        resp = client.patch(f"/api/users/{employee.id}", json={"role": "admin"}, headers=employee_headers)
        assert resp.status_code == 403

    def test_can_edit_own_profile(self, client, employee_headers):
        resp = client.patch("/api/auth/profile", json={"full_name": "Nhân viên B"}, headers=employee_headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["full_name"] == "Nhân viên B"


class TestUserManagement:

    def test_admin_creates_user(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"username": "thukho", "full_name": "Thủ kho", "password": "secret123", "role": "employee"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["user"]["role"] == "employee"

        resp = client.post(
            "/api/users",
            json={"username": "thukho", "full_name": "Trùng", "password": "secret123"},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    def test_short_password(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"username": "thukho", "full_name": "Thủ kho", "password": "123"},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_system_user_hidden(self, client, admin_headers):
        ensure_system_user()
        resp = client.get("/api/users", headers=admin_headers)
        usernames = [u["username"] for u in resp.get_json()["items"]]
        assert SYSTEM_USERNAME not in usernames

    def test_reserved_username(self, actor):
        with pytest.raises(ConflictError):
            users_service.create_user(
                patch={"username": SYSTEM_USERNAME, "full_name": "X"}, password="secret123", actor=actor
            )

    def test_last_admin_cannot_be_demoted(self, admin, actor):
        with pytest.raises(ForbiddenError):
            users_service.update_user(user_id=admin.id, patch={"role": "employee"}, actor=actor)

    def test_admin_can_be_demoted_when_another_exists(self, admin, actor):
        users_service.create_user(
            patch={"username": "admin2", "full_name": "Admin 2", "role": "admin"}, password="secret123", actor=actor
        )

        users_service.update_user(user_id=admin.id, patch={"role": "employee"}, actor=actor)

        assert admin.role == "employee"

    def test_cannot_delete_self(self, admin, actor):
        with pytest.raises(ForbiddenError):
            users_service.delete_user(user_id=admin.id, actor=actor)

    def test_user_with_history_is_deactivated_not_deleted(self, actor, employee, make_product):
        make_product("C20")
        stock_service.import_stock(code="C20", quantity=1, unit_price=1, actor=Actor.from_user(employee))

        with pytest.raises(ConflictError):
            users_service.delete_user(user_id=employee.id, actor=actor)

    def test_delete_user_without_history(self, client, admin_headers, employee):
        _, _token = session_service.create_session(employee.id)

        resp = client.delete(f"/api/users/{employee.id}", headers=admin_headers)

        assert resp.status_code == 200
        assert client.get(f"/api/users/{employee.id}", headers=admin_headers).status_code == 404

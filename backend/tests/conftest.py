"""
Pytest fixtures for stamp shop backend tests.

Each test gets a fresh in-memory database, an admin and an employee account,
and helpers to create products and bearer headers.
"""

import pytest

from stampshop import create_app
from stampshop.extensions import db
from stampshop.models import User
from stampshop.services import products_service
from stampshop.services.actor import Actor
from stampshop.services.auth_service import hash_password

ADMIN_PASSWORD = "Admin123!"
EMPLOYEE_PASSWORD = "Staff123!"


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def _make_user(username: str, role: str, password: str, full_name: str) -> User:
    user = User(
        username=username,
        full_name=full_name,
        role=role,
        is_active=True,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def admin(app):
    return _make_user("admin", "admin", ADMIN_PASSWORD, "Quản trị viên")


@pytest.fixture(scope='function')
def employee(app):
    return _make_user("nhanvien", "employee", EMPLOYEE_PASSWORD, "Nhân viên A")


@pytest.fixture(scope='function')
def actor(admin):
    """Admin actor for direct service calls."""
    return Actor.from_user(admin)


@pytest.fixture(scope='function')
def make_product(app):
    """Factory: make_product(code="C20", current_price=2000, ...)."""
    def _make(code: str = "C20", name: str | None = None, **fields):
        patch = {"code": code, "name": name or f"Dấu {code}", "current_price": 2000, "min_stock": 5}
        patch.update(fields)
        return products_service.create_product(patch=patch)
    return _make


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    assert response.status_code == 200, response.get_json()
    return response.get_json()['token']


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, "admin", ADMIN_PASSWORD))


@pytest.fixture(scope='function')
def employee_headers(client, employee):
    return auth_headers(get_auth_token(client, "nhanvien", EMPLOYEE_PASSWORD))

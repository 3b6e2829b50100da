"""
CLI command tests.
"""

from stampshop.models import Agent, Customer, User
from stampshop.services import stock_service
from stampshop.extensions import db


def test_system_init_is_idempotent(app):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert first.exit_code == 0, first.output
    assert "Created admin user" in first.output
    assert second.exit_code == 0, second.output
    assert "Admin user already exists" in second.output
    assert db.session.query(User).filter_by(role="admin").count() == 2  # admin + built-in system user
    assert db.session.query(Agent).count() == 1
    assert db.session.query(Customer).count() == 1


def test_users_create_and_list(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "users", "create",
        "--username", "thukho",
        "--full-name", "Thủ kho",
        "--password", "secret123",
    ])
    assert result.exit_code == 0, result.output

    result = runner.invoke(args=["users", "list"])
    assert "thukho" in result.output


def test_users_create_duplicate_fails(app, admin):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "users", "create", "--username", "admin", "--full-name", "X", "--password", "secret123",
    ])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_stock_low(app, actor, make_product):
    make_product("C20", min_stock=5)
    make_product("C30", min_stock=1)
    stock_service.import_stock(code="C30", quantity=3, unit_price=100, actor=actor)

    result = app.test_cli_runner().invoke(args=["stock", "low"])

    assert result.exit_code == 0
    assert "C20" in result.output
    assert "C30" not in result.output

"""
Concurrent stock writers.

Verifies:
- A product changed by another connection after it was loaded makes the
  flush fail on the version column; the unit is rolled back and re-run
  against the committed stock
- An order that no longer fits the committed stock writes nothing
"""

import pytest
from sqlalchemy import create_engine, text

from stampshop import create_app
from stampshop.errors import InsufficientStockError
from stampshop.extensions import db
from stampshop.models import Order, StockTransaction
from stampshop.services import customers_service, orders_service, stock_service


@pytest.fixture(scope='function')
def app(tmp_path):
    """File-backed database so a second engine can write to it."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'shop.db'}",
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def other_writer(app):
    """Second connection that sells stock behind the session's back."""
    engine = create_engine(app.config['SQLALCHEMY_DATABASE_URI'])

    def _set_stock(product_id: int, quantity: int) -> None:
        with engine.begin() as conn:
            conn.execute(
                text(
                    "UPDATE products SET stock_quantity = :qty, version_id = version_id + 1 "
                    "WHERE id = :id"
                ),
                {"qty": quantity, "id": product_id},
            )

    yield _set_stock
    engine.dispose()


@pytest.fixture
def loaded(actor, make_product):
    """C20 with 15 units, loaded into the session at version 2."""
    product = make_product("C20")
    stock_service.import_stock(code="C20", quantity=15, unit_price=1000, actor=actor)
    assert product.stock_quantity == 15
    assert product.version_id == 2
    return product


class TestStaleProduct:

    def test_export_is_retried_against_committed_stock(self, actor, loaded, other_writer, caplog):
        other_writer(loaded.id, 12)

        tx = stock_service.export_stock(product_id=loaded.id, quantity=5, order_id=None, actor=actor)

        assert tx.stock_before == 12
        assert tx.stock_after == 7
        assert loaded.stock_quantity == 7
        assert loaded.version_id == 4
        assert "Concurrent update detected" in caplog.text

    def test_export_rejected_when_committed_stock_is_short(self, actor, loaded, other_writer):
        other_writer(loaded.id, 3)

        with pytest.raises(InsufficientStockError):
            stock_service.export_stock(product_id=loaded.id, quantity=5, order_id=None, actor=actor)

        db.session.expire_all()
        assert loaded.stock_quantity == 3
        assert db.session.query(StockTransaction).filter_by(transaction_type="export").count() == 0

    def test_order_rejected_when_stock_sold_elsewhere(self, actor, loaded, other_writer):
        customer = customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)
        assert loaded.stock_quantity == 15

        other_writer(loaded.id, 0)

        with pytest.raises(InsufficientStockError):
            orders_service.create_order(
                payload={
                    "customer_id": customer.id,
                    "items": [{"product_id": loaded.id, "quantity": 5, "unit_price": 2000}],
                },
                actor=actor,
            )

        db.session.expire_all()
        assert loaded.stock_quantity == 0
        assert db.session.query(Order).count() == 0
        assert db.session.query(StockTransaction).count() == 1

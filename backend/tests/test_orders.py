"""
Order lifecycle tests.

Verifies:
- Totals: subtotal, VAT on the subtotal, shipping
- Creation exports stock; cancel and delete return it
- Item updates reconcile stock by difference per product
- Cancelled orders are terminal
- Failed creation leaves no partial writes
"""

import pytest

from stampshop.errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from stampshop.extensions import db
from stampshop.models import Order, StockTransaction
from stampshop.services import orders_service, stock_service
from stampshop.services.actor import SYSTEM_USERNAME


@pytest.fixture
def stocked(actor, make_product):
    """C20 with 15 units at an average cost of 1100."""
    product = make_product("C20")
    stock_service.import_stock(code="C20", quantity=10, unit_price=1000, actor=actor)
    stock_service.import_stock(code="C20", quantity=5, unit_price=1300, actor=actor)
    return product


def _order_payload(product, quantity=3, unit_price=2000, **extra):
    payload = {
        "items": [{"product_id": product.id, "quantity": quantity, "unit_price": unit_price}],
        "vat_rate": 10,
        "shipping_fee": 500,
    }
    payload.update(extra)
    return payload


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_totals_and_stock(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)

        assert order.subtotal == 6000
        assert order.vat_amount == 600
        assert order.shipping_fee == 500
        assert order.total_amount == 7100
        assert order.status == "active"
        assert order.payment_status == "pending"
        assert order.order_number == "DH000001"
        assert stocked.stock_quantity == 12

        exports = db.session.query(StockTransaction).filter_by(order_id=order.id).all()
        assert len(exports) == 1
        assert exports[0].transaction_type == "export"
        assert exports[0].quantity == -3
        assert exports[0].unit_price == 2000

    def test_walk_in_customer_by_default(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)

        assert order.customer.to_dict()["is_default"]
        assert order.customer_name == "Khách lẻ"
        assert order.agent_name == "Bán lẻ"

    def test_new_customer_from_name(self, actor, stocked):
        order = orders_service.create_order(
            payload=_order_payload(stocked, customer_name="Nguyễn Văn B", customer_phone="0912345678"),
            actor=actor,
        )

        assert order.customer.name == "Nguyễn Văn B"
        assert order.customer.phone == "0912345678"
        assert order.agent_name == "Bán lẻ"

    def test_numbers_are_sequential(self, actor, stocked):
        first = orders_service.create_order(payload=_order_payload(stocked, quantity=1), actor=actor)
        second = orders_service.create_order(payload=_order_payload(stocked, quantity=1), actor=actor)

        assert first.order_number == "DH000001"
        assert second.order_number == "DH000002"

    def test_insufficient_stock_writes_nothing(self, actor, stocked):
        with pytest.raises(InsufficientStockError):
            orders_service.create_order(payload=_order_payload(stocked, quantity=16), actor=actor)

        db.session.expire_all()
        assert stocked.stock_quantity == 15
        assert db.session.query(Order).count() == 0
        assert db.session.query(StockTransaction).count() == 2

    def test_free_line_is_exported_at_zero(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked, quantity=1, unit_price=0), actor=actor)

        export = db.session.query(StockTransaction).filter_by(order_id=order.id).one()
        assert export.unit_price == 0
        assert export.total_value == 0
        assert order.subtotal == 0

    def test_repeated_product_is_checked_in_total(self, actor, stocked):
        payload = {
            "items": [
                {"product_id": stocked.id, "quantity": 10, "unit_price": 2000},
                {"product_id": stocked.id, "quantity": 6, "unit_price": 2000},
            ],
        }
        with pytest.raises(InsufficientStockError):
            orders_service.create_order(payload=payload, actor=actor)

    def test_inactive_product_rejected(self, actor, stocked):
        stocked.is_active = False
        db.session.commit()

        with pytest.raises(NotFoundError):
            orders_service.create_order(payload=_order_payload(stocked), actor=actor)

    @pytest.mark.parametrize("items", [None, [], [{"product_id": 1, "quantity": 0, "unit_price": 1}]])
    def test_invalid_items(self, actor, stocked, items):
        with pytest.raises(ValidationError):
            orders_service.create_order(payload={"items": items}, actor=actor)

    def test_invalid_vat_rate(self, actor, stocked):
        with pytest.raises(ValidationError):
            orders_service.create_order(payload=_order_payload(stocked, vat_rate=150), actor=actor)


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateOrder:

    def test_decrease_returns_difference(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked, quantity=5), actor=actor)
        assert stocked.stock_quantity == 10

        orders_service.update_order(
            order_id=order.id,
            payload={"items": [{"product_id": stocked.id, "quantity": 2, "unit_price": 2000}]},
            actor=actor,
        )

        assert stocked.stock_quantity == 13
        returned = (
            db.session.query(StockTransaction)
            .filter_by(order_id=order.id, transaction_type="import")
            .one()
        )
        assert returned.quantity == 3
        assert returned.user.username == SYSTEM_USERNAME
        assert order.subtotal == 4000

    def test_increase_exports_difference(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked, quantity=5), actor=actor)

        orders_service.update_order(
            order_id=order.id,
            payload={"items": [{"product_id": stocked.id, "quantity": 8, "unit_price": 2100}]},
            actor=actor,
        )

        assert stocked.stock_quantity == 7
        exports = (
            db.session.query(StockTransaction)
            .filter_by(order_id=order.id, transaction_type="export")
            .order_by(StockTransaction.id)
            .all()
        )
        assert [tx.quantity for tx in exports] == [-5, -3]
        assert exports[1].unit_price == 2100
        assert order.subtotal == 8 * 2100

    def test_swap_products(self, actor, stocked, make_product):
        other = make_product("C30")
        stock_service.import_stock(code="C30", quantity=4, unit_price=500, actor=actor)
        order = orders_service.create_order(payload=_order_payload(stocked, quantity=2), actor=actor)

        orders_service.update_order(
            order_id=order.id,
            payload={"items": [{"product_id": other.id, "quantity": 1, "unit_price": 900}]},
            actor=actor,
        )

        assert stocked.stock_quantity == 15
        assert other.stock_quantity == 3
        assert [item.product_id for item in order.items] == [other.id]

    def test_increase_beyond_stock_rolls_back(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked, quantity=5), actor=actor)

        with pytest.raises(InsufficientStockError):
            orders_service.update_order(
                order_id=order.id,
                payload={"items": [{"product_id": stocked.id, "quantity": 40, "unit_price": 2000}]},
                actor=actor,
            )

        db.session.expire_all()
        assert stocked.stock_quantity == 10
        assert order.items[0].quantity == 5

    def test_header_only_recomputes_totals(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)

        orders_service.update_order(order_id=order.id, payload={"shipping_fee": 0, "vat_rate": 0}, actor=actor)

        assert order.total_amount == 6000
        assert stocked.stock_quantity == 12

    def test_cancelled_order_cannot_change(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)
        orders_service.cancel_order(order_id=order.id, actor=actor)

        with pytest.raises(InvalidStateError):
            orders_service.update_order(order_id=order.id, payload={"notes": "x"}, actor=actor)


# =============================================================================
# CANCEL / DELETE
# =============================================================================


class TestCancelAndDelete:

    def test_cancel_returns_stock(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)
        orders_service.cancel_order(order_id=order.id, actor=actor)

        assert order.status == "cancelled"
        assert stocked.stock_quantity == 15
        assert stock_service.ledger_balance(stocked.id) == stocked.stock_quantity

    def test_double_cancel_is_rejected(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)
        orders_service.cancel_order(order_id=order.id, actor=actor)

        with pytest.raises(InvalidStateError):
            orders_service.cancel_order(order_id=order.id, actor=actor)

        db.session.expire_all()
        assert stocked.stock_quantity == 15

    def test_delete_active_returns_stock(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)
        order_id = order.id

        orders_service.delete_order(order_id=order_id, actor=actor)

        assert db.session.get(Order, order_id) is None
        assert stocked.stock_quantity == 15

    def test_delete_cancelled_does_not_return_twice(self, actor, stocked):
        order = orders_service.create_order(payload=_order_payload(stocked), actor=actor)
        orders_service.cancel_order(order_id=order.id, actor=actor)

        orders_service.delete_order(order_id=order.id, actor=actor)

        assert stocked.stock_quantity == 15
        assert stock_service.ledger_balance(stocked.id) == 15


# =============================================================================
# QUERIES
# =============================================================================


class TestOrderQueries:

    def test_stats_ignore_cancelled(self, actor, stocked):
        kept = orders_service.create_order(payload=_order_payload(stocked, payment_status="completed"), actor=actor)
        dropped = orders_service.create_order(payload=_order_payload(stocked, quantity=1), actor=actor)
        orders_service.cancel_order(order_id=dropped.id, actor=actor)

        stats = orders_service.order_stats()

        assert stats["total_orders"] == 1
        assert stats["total_revenue"] == kept.total_amount
        assert stats["completed_revenue"] == kept.total_amount
        assert stats["estimated_profit"] == pytest.approx(kept.total_amount * 0.3)

    def test_pending_payment(self, actor, stocked):
        orders_service.create_order(payload=_order_payload(stocked, quantity=1, payment_status="debt"), actor=actor)
        orders_service.create_order(payload=_order_payload(stocked, quantity=1, payment_status="completed"), actor=actor)

        pending = orders_service.pending_payment_orders()

        assert [o.payment_status for o in pending] == ["debt"]


class TestOrdersApi:

    def test_create_cancel_roundtrip(self, client, admin_headers, stocked):
        resp = client.post("/api/orders", json=_order_payload(stocked), headers=admin_headers)
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["total_amount"] == 7100
        assert order["items"][0]["quantity"] == 3

        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "cancelled"

        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 409
        assert resp.get_json()["kind"] == "invalid_state"

        product = client.get(f"/api/products/{stocked.id}", headers=admin_headers).get_json()["product"]
        assert product["stock_quantity"] == 15

    def test_insufficient_stock_is_conflict(self, client, admin_headers, stocked):
        resp = client.post("/api/orders", json=_order_payload(stocked, quantity=99), headers=admin_headers)
        assert resp.status_code == 409
        assert resp.get_json()["kind"] == "insufficient_stock"

    def test_list_and_lookup_by_number(self, client, admin_headers, stocked):
        client.post("/api/orders", json=_order_payload(stocked), headers=admin_headers)

        resp = client.get("/api/orders?status=active", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["pagination"]["total"] == 1

        resp = client.get("/api/orders/number/DH000001", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["order"]["subtotal"] == 6000

    def test_search_by_creator_name(self, client, admin_headers, stocked):
        client.post("/api/orders", json=_order_payload(stocked), headers=admin_headers)

        resp = client.get("/api/orders?search=Quản", headers=admin_headers)
        assert resp.get_json()["pagination"]["total"] == 1

        resp = client.get("/api/orders?search=Nhân", headers=admin_headers)
        assert resp.get_json()["pagination"]["total"] == 0

    def test_payment_status_update(self, client, admin_headers, stocked):
        order_id = client.post("/api/orders", json=_order_payload(stocked), headers=admin_headers).get_json()["order"]["id"]

        resp = client.patch(
            f"/api/orders/{order_id}/payment-status", json={"payment_status": "completed"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.get_json()["order"]["payment_status"] == "completed"

        resp = client.patch(
            f"/api/orders/{order_id}/payment-status", json={"payment_status": "paid"}, headers=admin_headers
        )
        assert resp.status_code == 400

"""
Customer and agent tests.

Verifies:
- Built-in retail agent and walk-in customer are created once and protected
- Customers default to the retail agent
- Parties referenced by orders cannot be deleted
"""

import pytest

from stampshop.errors import ConflictError, NotFoundError
from stampshop.extensions import db
from stampshop.models import Agent, Customer
from stampshop.services import agents_service, customers_service, orders_service, stock_service
from stampshop.services.customers_service import percentage_change
from stampshop.validation import Page


class TestDefaults:

    def test_ensure_default_pair_is_idempotent(self, app):
        first = customers_service.ensure_default_customer()
        second = customers_service.ensure_default_customer()
        db.session.commit()

        assert first.id == second.id
        assert first.agent.name == agents_service.DEFAULT_AGENT_NAME
        assert db.session.query(Agent).count() == 1
        assert db.session.query(Customer).count() == 1

    def test_defaults_cannot_be_deleted(self, app):
        customer = customers_service.ensure_default_customer()
        db.session.commit()

        with pytest.raises(ConflictError):
            customers_service.delete_customer(customer_id=customer.id)
        with pytest.raises(ConflictError):
            agents_service.delete_agent(agent_id=customer.agent_id)


class TestCustomers:

    def test_create_without_agent_uses_retail_agent(self, app):
        customer = customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)

        assert customer.agent_name == agents_service.DEFAULT_AGENT_NAME

    def test_move_to_agent_updates_snapshot(self, app):
        agent = agents_service.create_agent(patch={"name": "Đại lý Minh", "phone": "0901234567"})
        customer = customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)

        customers_service.update_customer(customer_id=customer.id, patch={}, agent_id=agent.id)

        assert customer.agent_id == agent.id
        assert customer.agent_name == "Đại lý Minh"
        assert [c.id for c in customers_service.customers_by_agent(agent.id)] == [customer.id]

    def test_unknown_agent(self, app):
        with pytest.raises(NotFoundError):
            customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=999)

    def test_customer_with_orders_cannot_be_deleted(self, actor, make_product):
        product = make_product("C20")
        stock_service.import_stock(code="C20", quantity=5, unit_price=1000, actor=actor)
        customer = customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)
        orders_service.create_order(
            payload={
                "customer_id": customer.id,
                "items": [{"product_id": product.id, "quantity": 1, "unit_price": 2000}],
            },
            actor=actor,
        )

        with pytest.raises(ConflictError):
            customers_service.delete_customer(customer_id=customer.id)

    def test_list_includes_order_totals(self, actor, make_product):
        product = make_product("C20")
        stock_service.import_stock(code="C20", quantity=5, unit_price=1000, actor=actor)
        customer = customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)
        orders_service.create_order(
            payload={
                "customer_id": customer.id,
                "items": [{"product_id": product.id, "quantity": 2, "unit_price": 2000}],
            },
            actor=actor,
        )

        listing = customers_service.list_customers(search="Công", page=Page())

        assert listing["pagination"]["total"] == 1
        assert listing["items"][0]["total_orders"] == 1
        assert listing["items"][0]["total_amount"] == 4000

    def test_stats_counts_new_customers(self, app):
        customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)

        stats = customers_service.customer_stats()

        assert stats["current_month_customers"] == 1
        assert stats["previous_month_customers"] == 0
        assert stats["customers_change"] == 100.0
        assert stats["customers_change_formatted"] == "+100.0%"


class TestPercentageChange:

    @pytest.mark.parametrize("current,previous,expected", [
        (150, 100, 50.0),
        (50, 100, -50.0),
        (5, 0, 100.0),
        (0, 0, 0.0),
        (1, 3, -66.67),
    ])
    def test_values(self, current, previous, expected):
        assert percentage_change(current, previous) == expected


class TestAgents:

    def test_agent_with_customers_cannot_be_deleted(self, app):
        agent = agents_service.create_agent(patch={"name": "Đại lý Minh", "phone": "0901234567"})
        customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=agent.id)

        with pytest.raises(ConflictError):
            agents_service.delete_agent(agent_id=agent.id)

    def test_unused_agent_is_deleted(self, app):
        agent = agents_service.create_agent(patch={"name": "Đại lý Minh", "phone": "0901234567"})
        agent_id = agent.id

        agents_service.delete_agent(agent_id=agent_id)

        with pytest.raises(NotFoundError):
            agents_service.get_agent(agent_id)


class TestPartiesApi:

    def test_agent_phone_is_validated(self, client, admin_headers):
        resp = client.post("/api/agents", json={"name": "Đại lý", "phone": "12ab"}, headers=admin_headers)
        assert resp.status_code == 400

        resp = client.post("/api/agents", json={"name": "Đại lý"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_customer_crud(self, client, admin_headers):
        resp = client.post(
            "/api/customers",
            json={"name": "Công ty A", "phone": "0912345678", "tax_code": "0101234567"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        customer = resp.get_json()["customer"]
        assert customer["agent_name"] == "Bán lẻ"

        resp = client.put(f"/api/customers/{customer['id']}", json={"address": "Hà Nội"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["customer"]["address"] == "Hà Nội"

        resp = client.get("/api/customers/search?q=0912", headers=admin_headers)
        assert resp.get_json()["count"] == 1

        assert client.delete(f"/api/customers/{customer['id']}", headers=admin_headers).status_code == 200

    def test_customer_bad_tax_code(self, client, admin_headers):
        resp = client.post("/api/customers", json={"name": "Công ty A", "tax_code": "12"}, headers=admin_headers)
        assert resp.status_code == 400

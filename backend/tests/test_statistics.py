"""
Statistics tests.

Revenue counts active orders only; cancelled orders never show up.
"""

from datetime import timedelta

import pytest

from stampshop.errors import ValidationError
from stampshop.services import customers_service, orders_service, statistics_service, stock_service
from stampshop.time_utils import now_in_vietnam, to_utc_z, vietnam_range_bounds
from stampshop.validation import Period


@pytest.fixture
def sales(actor, make_product):
    """Two customers, one cancelled order, one debt and one completed order."""
    stamp = make_product("C20")
    ink = make_product("MUC", name="Mực dấu")
    stock_service.import_stock(code="C20", quantity=50, unit_price=1000, actor=actor)
    stock_service.import_stock(code="MUC", quantity=50, unit_price=200, actor=actor)

    big = customers_service.create_customer(patch={"name": "Công ty A"}, agent_id=None)
    small = customers_service.create_customer(patch={"name": "Cửa hàng B"}, agent_id=None)

    def _order(customer, product, quantity, price, status):
        return orders_service.create_order(
            payload={
                "customer_id": customer.id,
                "payment_status": status,
                "items": [{"product_id": product.id, "quantity": quantity, "unit_price": price}],
            },
            actor=actor,
        )

    _order(big, stamp, 10, 2000, "completed")
    _order(small, ink, 5, 300, "debt")
    cancelled = _order(small, stamp, 20, 2000, "completed")
    orders_service.cancel_order(order_id=cancelled.id, actor=actor)
    return {"big": big, "small": small, "stamp": stamp, "ink": ink}


class TestTopLists:

    def test_top_customers(self, sales):
        rows = statistics_service.top_customers()

        assert [r["customer_name"] for r in rows] == ["Công ty A", "Cửa hàng B"]
        assert rows[0]["total_spent"] == 20000
        assert rows[0]["order_count"] == 1
        assert rows[1]["avg_order_value"] == 1500

    def test_top_agents_all_under_retail_agent(self, sales):
        rows = statistics_service.top_agents()

        assert len(rows) == 1
        assert rows[0]["agent_name"] == "Bán lẻ"
        assert rows[0]["total_sales"] == 21500
        assert rows[0]["order_count"] == 2

    def test_top_products(self, sales):
        rows = statistics_service.top_products(limit=1)

        assert rows == [{
            "product_id": sales["stamp"].id,
            "product_code": "C20",
            "product_name": "Dấu C20",
            "total_quantity": 10,
            "total_revenue": 20000,
            "avg_price": 2000,
            "current_stock": 40,
        }]


@pytest.fixture
def cheap_and_dear(actor, make_product):
    """A sells many cheap units, B one expensive unit."""
    cheap = make_product("A", name="Dấu A")
    dear = make_product("B", name="Dấu B")
    stock_service.import_stock(code="A", quantity=20, unit_price=50, actor=actor)
    stock_service.import_stock(code="B", quantity=2, unit_price=3000, actor=actor)
    orders_service.create_order(
        payload={"items": [
            {"product_id": cheap.id, "quantity": 10, "unit_price": 100},
            {"product_id": dear.id, "quantity": 1, "unit_price": 5000},
        ]},
        actor=actor,
    )
    return cheap, dear


class TestTopProductRanking:

    def test_ranks_by_units_sold(self, cheap_and_dear):
        rows = statistics_service.top_products(10)

        assert [(r["product_code"], r["total_quantity"], r["total_revenue"]) for r in rows] == [
            ("A", 10, 1000),
            ("B", 1, 5000),
        ]

    def test_ranks_by_revenue(self, cheap_and_dear):
        rows = statistics_service.top_products(10, rank_by="revenue")

        assert [r["product_code"] for r in rows] == ["B", "A"]

    def test_unknown_ranking(self, app):
        with pytest.raises(ValidationError):
            statistics_service.top_products(10, rank_by="margin")

    def test_dashboard_ranks_by_revenue(self, cheap_and_dear):
        data = statistics_service.dashboard()

        assert [p["product_code"] for p in data["top_products"]] == ["B", "A"]

    def test_endpoint_ranks_by_units_sold(self, client, admin_headers, cheap_and_dear):
        resp = client.get("/api/statistics/top-products", headers=admin_headers)

        assert resp.status_code == 200
        assert [p["product_code"] for p in resp.get_json()["items"]] == ["A", "B"]


class TestOverviewAndDashboard:

    def test_overview(self, sales):
        data = statistics_service.overview()

        assert data["orders"]["total_orders"] == 2
        assert data["orders"]["total_revenue"] == 21500
        assert data["orders"]["total_debt"] == 1500
        assert data["customers"]["top_customer"]["name"] == "Công ty A"
        assert data["products"]["total_products"] == 2

    def test_overview_without_orders(self, app):
        data = statistics_service.overview()

        assert data["customers"]["top_customer"] == statistics_service.NO_TOP_ENTITY
        assert data["agents"]["top_agent"] == statistics_service.NO_TOP_ENTITY

    def test_dashboard_has_twelve_months(self, sales):
        data = statistics_service.dashboard()

        assert len(data["revenue_by_month"]) == 12
        assert data["revenue_by_month"][0]["month"] == "Tháng 1"
        this_month = data["revenue_by_month"][now_in_vietnam().month - 1]
        assert this_month["revenue"] == 21500
        assert this_month["profit"] == pytest.approx(20000 * 0.3)
        assert data["total_profit"] == pytest.approx(20000 * 0.3)

    def test_future_period_is_empty(self, sales):
        tomorrow = (now_in_vietnam() + timedelta(days=1)).date()
        data = statistics_service.dashboard(Period(start_date=tomorrow))

        assert data["total_orders"] == 0
        assert data["top_customers"] == []


class TestRevenue:

    def test_by_month(self, sales):
        rows = statistics_service.revenue_by_period("month")

        assert len(rows) == 1
        assert rows[0]["month"] == now_in_vietnam().month
        assert rows[0]["total_revenue"] == 21500
        assert rows[0]["completed_revenue"] == 20000
        assert rows[0]["debt_revenue"] == 1500
        assert rows[0]["avg_order_value"] == 10750

    def test_by_year(self, sales):
        rows = statistics_service.revenue_by_period("year")
        assert [r["year"] for r in rows] == [now_in_vietnam().year]

    def test_unknown_grouping(self, app):
        with pytest.raises(ValidationError):
            statistics_service.revenue_by_period("week")


class TestComparisonAndDebt:

    def test_current_month_vs_previous(self, sales):
        data = statistics_service.period_comparison()

        assert data["current_period"]["total_revenue"] == 21500
        assert data["previous_period"]["total_revenue"] == 0
        assert data["changes"]["revenue"] == 100.0
        assert data["changes"]["customers"] == 100.0

    def test_explicit_day_vs_day_before(self, sales):
        today = now_in_vietnam().date()
        start, end = vietnam_range_bounds(today, today)

        data = statistics_service.period_comparison(start_date=today, end_date=today)

        assert data["current_period"]["start"] == to_utc_z(start)
        assert data["current_period"]["end"] == to_utc_z(end)
        assert data["previous_period"]["start"] == to_utc_z(start - timedelta(days=1))
        assert data["previous_period"]["end"] == to_utc_z(start)
        assert data["current_period"]["total_revenue"] == 21500
        assert data["previous_period"]["total_revenue"] == 0
        assert data["changes"]["revenue"] == 100.0

    def test_explicit_range_previous_window_has_same_length(self, sales):
        yesterday = now_in_vietnam().date() - timedelta(days=1)
        first = yesterday - timedelta(days=2)
        start, end = vietnam_range_bounds(first, yesterday)

        data = statistics_service.period_comparison(start_date=first, end_date=yesterday)

        assert end - start == timedelta(days=3)
        assert data["current_period"]["end"] == to_utc_z(end)
        assert data["previous_period"]["start"] == to_utc_z(start - timedelta(days=3))
        assert data["previous_period"]["end"] == to_utc_z(start)
        assert data["current_period"]["total_orders"] == 0
        assert data["changes"]["revenue"] == 0.0

    def test_one_sided_range_rejected(self, app):
        with pytest.raises(ValidationError):
            statistics_service.period_comparison(start_date=now_in_vietnam().date())

    def test_debt_report(self, sales):
        report = statistics_service.debt_report()

        assert report["debt_count"] == 1
        assert report["total_debt"] == 1500
        assert report["debts"][0]["customer_name"] == "Cửa hàng B"


class TestStatisticsApi:

    def test_dashboard(self, client, admin_headers, sales):
        resp = client.get("/api/statistics/dashboard", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total_revenue"] == 21500

    def test_bad_period_preset(self, client, admin_headers):
        resp = client.get("/api/statistics/overview?period=decade", headers=admin_headers)
        assert resp.status_code == 400

    def test_revenue_grouping(self, client, admin_headers, sales):
        resp = client.get("/api/statistics/revenue?group_by=quarter", headers=admin_headers)
        assert resp.status_code == 200

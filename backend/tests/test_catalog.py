"""
Product and category tests.
"""

import pytest

from stampshop.errors import ConflictError
from stampshop.services import categories_service, orders_service, products_service, stock_service


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:

    def test_new_product_starts_empty(self, make_product):
        product = make_product("C20")

        assert product.stock_quantity == 0
        assert product.avg_import_price == 0
        assert product.is_active is True

    def test_duplicate_code(self, make_product):
        make_product("C20")
        with pytest.raises(ConflictError):
            make_product("C20")

    def test_codes_differ_by_case(self, make_product):
        make_product("C20 XANH")
        other = make_product("c20 xanh")

        assert products_service.get_product_by_code("c20 xanh").id == other.id

    def test_soft_delete_keeps_row(self, make_product):
        product = make_product("C20")

        products_service.delete_product(product_id=product.id)

        assert products_service.get_product(product.id).is_active is False

    def test_low_stock(self, actor, make_product):
        make_product("C20", min_stock=5)
        make_product("C30", min_stock=2)
        stock_service.import_stock(code="C30", quantity=10, unit_price=100, actor=actor)

        assert [p.code for p in products_service.find_low_stock()] == ["C20"]

    def test_top_selling(self, actor, make_product):
        product = make_product("C20")
        stock_service.import_stock(code="C20", quantity=10, unit_price=1000, actor=actor)
        orders_service.create_order(
            payload={"items": [{"product_id": product.id, "quantity": 4, "unit_price": 1500}]},
            actor=actor,
        )

        top = products_service.top_selling_products(5)

        assert top[0]["code"] == "C20"
        assert top[0]["total_sold"] == 4
        assert top[0]["total_revenue"] == 6000


class TestProductsApi:

    def test_create_and_list(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"code": "C20", "name": "Dấu tròn C20", "current_price": 150000, "category": "Dấu tròn"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["product"]["stock_quantity"] == 0

        resp = client.get("/api/products?search=tròn", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["pagination"]["total"] == 1

    def test_stock_fields_are_not_writable(self, client, admin_headers):
        resp = client.post(
            "/api/products", json={"code": "C20", "name": "Dấu", "stock_quantity": 99}, headers=admin_headers
        )
        assert resp.status_code == 400

    def test_missing_name(self, client, admin_headers):
        resp = client.post("/api/products", json={"code": "C20"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_negative_price(self, client, admin_headers):
        resp = client.post(
            "/api/products", json={"code": "C20", "name": "Dấu", "current_price": -1}, headers=admin_headers
        )
        assert resp.status_code == 400

    def test_get_by_code(self, client, admin_headers, make_product):
        make_product("C20")
        assert client.get("/api/products/code/C20", headers=admin_headers).status_code == 200
        assert client.get("/api/products/code/c20", headers=admin_headers).status_code == 404

    def test_deleted_hidden_from_list(self, client, admin_headers, make_product):
        product = make_product("C20")
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 200

        assert client.get("/api/products", headers=admin_headers).get_json()["pagination"]["total"] == 0
        resp = client.get("/api/products?include_inactive=true", headers=admin_headers)
        assert resp.get_json()["pagination"]["total"] == 1


# =============================================================================
# CATEGORIES
# =============================================================================


class TestCategories:

    def test_names_unique_ignoring_case(self, app):
        categories_service.create_category(patch={"name": "Dấu tròn"})
        with pytest.raises(ConflictError):
            categories_service.create_category(patch={"name": "dấu TRÒN"})

    def test_rename_cascades_to_products(self, make_product):
        category = categories_service.create_category(patch={"name": "Dấu tròn"})
        product = make_product("C20", category="Dấu tròn")

        categories_service.update_category(category_id=category.id, patch={"name": "Dấu tròn cổ"})

        assert products_service.get_product(product.id).category == "Dấu tròn cổ"

    def test_delete_in_use_is_refused(self, make_product):
        category = categories_service.create_category(patch={"name": "Dấu tròn"})
        make_product("C20", category="Dấu tròn")

        with pytest.raises(ConflictError):
            categories_service.delete_category(category_id=category.id)

    def test_product_count(self, make_product):
        category = categories_service.create_category(patch={"name": "Mực"})
        make_product("MUC1", category="Mực")
        make_product("MUC2", category="Mực")

        assert categories_service.category_to_dict(category)["product_count"] == 2


class TestCategoriesApi:

    def test_crud(self, client, admin_headers):
        resp = client.post("/api/categories", json={"name": "Mực", "description": "Mực dấu"}, headers=admin_headers)
        assert resp.status_code == 201
        category_id = resp.get_json()["category"]["id"]

        resp = client.put(f"/api/categories/{category_id}", json={"is_active": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert client.get("/api/categories/active", headers=admin_headers).get_json()["count"] == 0

        resp = client.delete(f"/api/categories/{category_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/categories/{category_id}", headers=admin_headers).status_code == 404

"""Tests for the FastAPI API."""

from decimal import Decimal

import pytest

from .conftest import ADMIN_EMAIL, ADMIN_PASSWORD, CASHIER_EMAIL, CASHIER_PASSWORD, make_product


def order_body(product_id, quantity=1, **extra):
    body = {"items": [{"product": product_id, "quantity": quantity}], "paymentMethod": "cash"}
    body.update(extra)
    return body


class TestHealthCheck:
    def test_health(self, api_client):
        response = api_client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["storage"] == "json"


class TestAuth:
    def test_login_and_me(self, api_client, admin):
        response = api_client.post(
            "/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["role"] == "admin"
        assert "password_hash" not in data["user"]

        me = api_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"}
        )
        assert me.status_code == 200
        assert me.json()["email"] == ADMIN_EMAIL

    def test_bad_login(self, api_client, admin):
        response = api_client.post(
            "/api/auth/login", json={"email": ADMIN_EMAIL, "password": "Nope1234"}
        )
        assert response.status_code == 401
        assert response.json()["error_type"] == "AuthenticationFailed"

    def test_missing_token(self, api_client):
        response = api_client.get("/api/products")
        assert response.status_code == 401

    def test_logout(self, api_client, admin_headers):
        assert api_client.post("/api/auth/logout", headers=admin_headers).status_code == 204
        assert api_client.get("/api/auth/me", headers=admin_headers).status_code == 401

    def test_verify(self, api_client, cashier_headers):
        response = api_client.get("/api/auth/verify", headers=cashier_headers)
        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["user"]["email"] == CASHIER_EMAIL

    def test_register_is_admin_only(self, api_client, admin_headers, cashier_headers):
        body = {"name": "New Hire", "email": "new@test.com", "password": "Newbie123"}

        denied = api_client.post("/api/auth/register", json=body, headers=cashier_headers)
        assert denied.status_code == 403

        response = api_client.post("/api/auth/register", json=body, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["role"] == "cashier"

        again = api_client.post("/api/auth/register", json=body, headers=admin_headers)
        assert again.status_code == 409

    def test_change_password(self, api_client, cashier_headers):
        response = api_client.post(
            "/api/auth/change-password",
            json={"currentPassword": CASHIER_PASSWORD, "newPassword": "Changed123"},
            headers=cashier_headers,
        )
        assert response.status_code == 204

        login = api_client.post(
            "/api/auth/login", json={"email": CASHIER_EMAIL, "password": "Changed123"}
        )
        assert login.status_code == 200


class TestProducts:
    def test_list_with_pagination(self, api_client, store, admin, cashier_headers):
        for i in range(3):
            make_product(store, admin, f"Product {i}")

        response = api_client.get("/api/products?limit=2", headers=cashier_headers)
        assert response.status_code == 200
        data = response.json()
        assert len(data["products"]) == 2
        assert data["pagination"]["total"] == 3
        assert data["pagination"]["total_pages"] == 2
        assert data["pagination"]["has_next_page"] is True

    def test_get_missing_is_404(self, api_client, cashier_headers):
        response = api_client.get("/api/products/missing", headers=cashier_headers)
        assert response.status_code == 404
        assert response.json()["error_type"] == "ProductNotFound"

    def test_create_requires_admin(self, api_client, cashier_headers):
        response = api_client.post(
            "/api/products", json={"name": "Widget", "price": "1.00"}, headers=cashier_headers
        )
        assert response.status_code == 403
        assert response.json()["error_type"] == "PermissionDenied"

    def test_create_update_delete(self, api_client, admin_headers):
        response = api_client.post(
            "/api/products",
            json={"name": "Widget", "price": "12.99", "cost": "6.00", "minStock": 2, "sku": "w-1"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        product = response.json()
        assert product["price"] == "12.99"
        assert product["sku"] == "W-1"
        assert product["min_stock"] == 2

        response = api_client.put(
            f"/api/products/{product['id']}", json={"stock": 7}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["stock"] == 7
        assert response.json()["price"] == "12.99"

        response = api_client.delete(f"/api/products/{product['id']}", headers=admin_headers)
        assert response.status_code == 200

    def test_duplicate_sku_is_409(self, api_client, admin_headers, widget):
        response = api_client.post(
            "/api/products",
            json={"name": "Other", "price": "1.00", "sku": widget.sku},
            headers=admin_headers,
        )
        assert response.status_code == 409
        assert response.json()["error_type"] == "DuplicateProduct"

    def test_invalid_category_is_400(self, api_client, admin_headers):
        response = api_client.post(
            "/api/products",
            json={"name": "Widget", "price": "1.00", "category": "Weapons"},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_update_stock(self, api_client, admin_headers, widget):
        response = api_client.post(
            f"/api/products/{widget.id}/update-stock",
            json={"quantity": 5, "operation": "subtract"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["product"]["stock"] == 5
        assert data["stock_change"]["reason"] == "Manual stock subtract"

    def test_toggle_low_stock_and_categories(self, api_client, store, admin, admin_headers):
        low = make_product(store, admin, "Low", stock=1, category="Books")

        response = api_client.get("/api/products/low-stock", headers=admin_headers)
        assert [p["id"] for p in response.json()] == [low.id]

        response = api_client.get("/api/products/categories", headers=admin_headers)
        assert response.json() == ["Books"]

        response = api_client.post(f"/api/products/{low.id}/toggle-status", headers=admin_headers)
        assert response.json()["active"] is False

    @pytest.mark.parametrize("field", ["name", "price", "category", "stock", "unit"])
    def test_null_required_field_is_400(self, api_client, store, admin_headers, widget, field):
        response = api_client.put(
            f"/api/products/{widget.id}", json={field: None}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"
        assert store.get_product(widget.id).name == "Widget"


class TestCreateOrder:
    def test_create_order(self, api_client, store, cashier_headers, widget):
        response = api_client.post(
            "/api/orders",
            json=order_body(
                widget.id,
                3,
                discount={"type": "percentage", "percentage": 10},
                tax={"percentage": 8},
            ),
            headers=cashier_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["subtotal"]) == Decimal("30.00")
        assert Decimal(data["discount"]["amount"]) == Decimal("3.00")
        assert Decimal(data["tax"]["amount"]) == Decimal("2.16")
        assert Decimal(data["total"]) == Decimal("29.16")
        assert data["order_number"].startswith("ORD-")
        assert data["status"] == "completed"
        assert store.get_product(widget.id).stock == 7

    def test_insufficient_stock(self, api_client, store, cashier_headers, widget):
        response = api_client.post(
            "/api/orders", json=order_body(widget.id, 15), headers=cashier_headers
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "InsufficientStock"
        assert "Available: 10" in data["detail"]
        assert store.get_product(widget.id).stock == 10

    def test_unknown_product_is_400(self, api_client, cashier_headers):
        response = api_client.post(
            "/api/orders", json=order_body("missing"), headers=cashier_headers
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "ProductNotFound"

    def test_discount_without_value_is_400(self, api_client, store, cashier_headers, widget):
        response = api_client.post(
            "/api/orders",
            json=order_body(widget.id, 2, discount={"type": "fixed"}),
            headers=cashier_headers,
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"
        assert store.get_product(widget.id).stock == 10
        assert store.list_orders() == []

    @pytest.mark.parametrize(
        "body",
        [
            {"items": [], "paymentMethod": "cash"},
            {"items": [{"product": "x", "quantity": 1.5}], "paymentMethod": "cash"},
            {"items": [{"product": "x", "quantity": 1}], "paymentMethod": "barter"},
            {"items": [{"product": "x", "quantity": 1}]},
        ],
    )
    def test_malformed_body_is_400(self, api_client, cashier_headers, body):
        response = api_client.post("/api/orders", json=body, headers=cashier_headers)
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"


class TestOrderAccess:
    def _create(self, api_client, headers, product_id):
        response = api_client.post("/api/orders", json=order_body(product_id), headers=headers)
        assert response.status_code == 201
        return response.json()

    def test_cashier_sees_only_own_orders(
        self, api_client, admin_headers, cashier_headers, widget
    ):
        mine = self._create(api_client, cashier_headers, widget.id)
        theirs = self._create(api_client, admin_headers, widget.id)

        response = api_client.get("/api/orders", headers=cashier_headers)
        assert [o["id"] for o in response.json()["orders"]] == [mine["id"]]

        response = api_client.get(f"/api/orders/{theirs['id']}", headers=cashier_headers)
        assert response.status_code == 403

        response = api_client.get("/api/orders", headers=admin_headers)
        assert response.json()["pagination"]["total"] == 2

    def test_receipt(self, api_client, cashier_headers, widget):
        order = self._create(api_client, cashier_headers, widget.id)

        response = api_client.get(f"/api/orders/{order['id']}/receipt", headers=cashier_headers)
        assert response.status_code == 200
        receipt = response.json()
        assert receipt["order_number"] == order["order_number"]
        assert receipt["total"] == "10.00"
        assert receipt["items"][0]["name"] == "Widget"

    def test_unknown_order_is_404(self, api_client, admin_headers):
        response = api_client.get("/api/orders/missing", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error_type"] == "OrderNotFound"


class TestRefund:
    @pytest.fixture
    def order(self, api_client, cashier_headers, widget):
        response = api_client.post(
            "/api/orders",
            json=order_body(
                widget.id,
                3,
                discount={"type": "percentage", "percentage": 10},
                tax={"percentage": 8},
            ),
            headers=cashier_headers,
        )
        return response.json()

    def test_full_refund(self, api_client, store, admin_headers, widget, order):
        response = api_client.post(
            f"/api/orders/{order['id']}/refund", json={}, headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["refund_amount"]) == Decimal("29.16")
        assert data["stock_restored"] is True
        assert data["order"]["status"] == "refunded"
        assert store.get_product(widget.id).stock == 10

    def test_refund_requires_admin(self, api_client, cashier_headers, order):
        response = api_client.post(
            f"/api/orders/{order['id']}/refund", json={}, headers=cashier_headers
        )
        assert response.status_code == 403

    def test_amount_too_large(self, api_client, store, admin_headers, order):
        response = api_client.post(
            f"/api/orders/{order['id']}/refund", json={"amount": 50}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidRefundAmount"
        assert store.get_order(order["id"]).status == "completed"

    def test_double_refund(self, api_client, admin_headers, order):
        url = f"/api/orders/{order['id']}/refund"
        api_client.post(url, json={"restoreStock": False}, headers=admin_headers)

        response = api_client.post(url, json={}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error_type"] == "AlreadyRefunded"

    def test_cancel_status(self, api_client, admin_headers, order):
        response = api_client.put(
            f"/api/orders/{order['id']}/status",
            json={"status": "cancelled"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = api_client.post(
            f"/api/orders/{order['id']}/refund", json={}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidState"


class TestUsers:
    def test_list_is_admin_only(self, api_client, admin_headers, cashier_headers):
        assert api_client.get("/api/users", headers=cashier_headers).status_code == 403

        response = api_client.get("/api/users?role=cashier", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert [u["email"] for u in data["users"]] == [CASHIER_EMAIL]
        assert data["pagination"]["total"] == 1
        assert "password_hash" not in data["users"][0]

    def test_get_self_or_admin(self, api_client, admin, cashier, cashier_headers, admin_headers):
        def status(user_id, headers):
            return api_client.get(f"/api/users/{user_id}", headers=headers).status_code

        assert status(cashier.id, cashier_headers) == 200
        assert status(admin.id, cashier_headers) == 403
        assert status(cashier.id, admin_headers) == 200
        assert status("missing", admin_headers) == 404

    def test_cashier_renames_self(self, api_client, cashier, cashier_headers):
        response = api_client.put(
            f"/api/users/{cashier.id}", json={"name": "Casey C."}, headers=cashier_headers
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Casey C."

    def test_cashier_cannot_change_own_role(self, api_client, store, cashier, cashier_headers):
        response = api_client.put(
            f"/api/users/{cashier.id}", json={"role": "admin"}, headers=cashier_headers
        )
        assert response.status_code == 403
        assert store.get_user(cashier.id).role == "cashier"

    def test_deactivate_blocks_login(self, api_client, store, cashier, admin_headers):
        response = api_client.post(f"/api/users/{cashier.id}/toggle-status", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["active"] is False

        login = api_client.post(
            "/api/auth/login", json={"email": CASHIER_EMAIL, "password": CASHIER_PASSWORD}
        )
        assert login.status_code == 401

    def test_admin_update_with_camel_case_status(self, api_client, cashier, admin_headers):
        response = api_client.put(
            f"/api/users/{cashier.id}", json={"isActive": False}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["active"] is False

    def test_delete(self, api_client, store, admin, cashier, admin_headers):
        assert api_client.delete(f"/api/users/{admin.id}", headers=admin_headers).status_code == 400

        response = api_client.delete(f"/api/users/{cashier.id}", headers=admin_headers)
        assert response.status_code == 200
        assert store.get_user(cashier.id) is None

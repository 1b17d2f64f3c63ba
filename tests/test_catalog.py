"""Tests for catalog management."""

from decimal import Decimal

import pytest

from cashdesk import catalog
from cashdesk.errors import (
    DuplicateProductError,
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
)
from cashdesk.orders import LineRequest, create_order

from .conftest import make_product


class TestCreateProduct:
    def test_create(self, store, admin):
        product = catalog.create_product(
            store,
            admin,
            "  Coffee Beans  ",
            Decimal("24.99"),
            cost=Decimal("12.00"),
            sku="coffee-prem",
            category="Food & Beverage",
            stock=100,
        )

        assert product.name == "Coffee Beans"
        assert product.sku == "COFFEE-PREM"
        assert product.created_by == admin.id
        assert store.get_product(product.id).price == Decimal("24.99")

    def test_blank_codes_become_none(self, store, admin):
        product = make_product(store, admin, sku="  ", barcode="")
        assert product.sku is None
        assert product.barcode is None

    @pytest.mark.parametrize(
        "name,price,fields",
        [
            ("X", "1.00", {}),
            ("Widget", "-1.00", {}),
            ("Widget", "1.00", {"category": "Weapons"}),
            ("Widget", "1.00", {"stock": -1}),
            ("Widget", "1.00", {"description": "d" * 501}),
            ("Widget", "1.00", {"sku": "S" * 51}),
            ("Widget", "1.00", {"unit": ""}),
        ],
    )
    def test_invalid_fields(self, store, admin, name, price, fields):
        with pytest.raises(ValidationError):
            catalog.create_product(store, admin, name, Decimal(price), **fields)
        assert store.list_products() == []

    def test_unknown_field(self, store, admin):
        with pytest.raises(ValidationError):
            catalog.create_product(store, admin, "Widget", Decimal("1"), colour="red")

    def test_duplicate_sku(self, store, admin):
        make_product(store, admin, "A", sku="SAME")
        with pytest.raises(DuplicateProductError):
            make_product(store, admin, "B", sku="same")


class TestUpdateProduct:
    def test_partial_update(self, store, admin, widget):
        updated = catalog.update_product(store, admin, widget.id, price=Decimal("11.50"))

        assert updated.price == Decimal("11.50")
        assert updated.name == "Widget"
        assert updated.stock == 10
        assert updated.last_modified_by == admin.id

    def test_invalid_update_not_saved(self, store, admin, widget):
        with pytest.raises(ValidationError):
            catalog.update_product(store, admin, widget.id, category="Nope")
        assert store.get_product(widget.id).category == "Other"

    def test_missing_product(self, store, admin):
        with pytest.raises(ProductNotFoundError):
            catalog.update_product(store, admin, "missing", name="Anything")

    @pytest.mark.parametrize(
        "field", ["name", "price", "cost", "category", "stock", "unit", "active"]
    )
    def test_null_rejected(self, store, admin, widget, field):
        with pytest.raises(ValidationError):
            catalog.update_product(store, admin, widget.id, **{field: None})
        assert store.get_product(widget.id).to_dict() == widget.to_dict()

    def test_null_clears_optional_code(self, store, admin, widget):
        assert catalog.update_product(store, admin, widget.id, sku=None).sku is None


class TestToggleAndDelete:
    def test_toggle(self, store, admin, widget):
        assert catalog.toggle_product_status(store, admin, widget.id).active is False
        assert catalog.toggle_product_status(store, admin, widget.id).active is True

    def test_delete(self, store, admin, widget):
        catalog.delete_product(store, widget.id)
        with pytest.raises(ProductNotFoundError):
            catalog.get_product(store, widget.id)


class TestAdjustStock:
    def test_add(self, store, admin, widget):
        product, change = catalog.adjust_stock(store, admin, widget.id, 5, "add", "Delivery")

        assert product.stock == 15
        assert change.operation == "add"
        assert change.quantity == 5
        assert change.reason == "Delivery"
        assert change.updated_by == admin.name

    def test_subtract_default_reason(self, store, admin, widget):
        product, change = catalog.adjust_stock(store, admin, widget.id, 4, "subtract")

        assert product.stock == 6
        assert change.reason == "Manual stock subtract"

    def test_subtract_too_much(self, store, admin, widget):
        with pytest.raises(InsufficientStockError):
            catalog.adjust_stock(store, admin, widget.id, 11, "subtract")
        assert store.get_product(widget.id).stock == 10

    @pytest.mark.parametrize("quantity,operation", [(0, "add"), (-2, "add"), (1, "multiply")])
    def test_invalid(self, store, admin, widget, quantity, operation):
        with pytest.raises(ValidationError):
            catalog.adjust_stock(store, admin, widget.id, quantity, operation)


class TestQueries:
    def test_low_stock(self, store, admin):
        low = make_product(store, admin, "Low", stock=2, min_stock=5)
        edge = make_product(store, admin, "Edge", stock=5, min_stock=5)
        make_product(store, admin, "Plenty", stock=50, min_stock=5)
        hidden = make_product(store, admin, "Hidden", stock=0, min_stock=5)
        catalog.toggle_product_status(store, admin, hidden.id)

        assert [p.id for p in catalog.low_stock_products(store)] == [low.id, edge.id]

    def test_search(self, store, admin):
        make_product(store, admin, "Wireless Mouse", sku="MOUSE-WL", tags=["computer"])
        make_product(store, admin, "Notebook", description="A4 ruled")

        assert [p.name for p in catalog.search_products(store, "mouse")] == ["Wireless Mouse"]
        assert [p.name for p in catalog.search_products(store, "COMPUTER")] == ["Wireless Mouse"]
        assert [p.name for p in catalog.search_products(store, "ruled")] == ["Notebook"]
        assert catalog.search_products(store, "   ") == []

    def test_categories(self, store, admin):
        make_product(store, admin, "Phone", category="Electronics")
        make_product(store, admin, "Book", category="Books")
        off = make_product(store, admin, "Shirt", category="Clothing")
        catalog.toggle_product_status(store, admin, off.id)

        assert catalog.list_categories(store) == ["Books", "Electronics"]

    def test_list_filters(self, store, admin):
        make_product(store, admin, "Phone", category="Electronics", stock=0)
        make_product(store, admin, "Book", category="Books", stock=40)

        assert [p.name for p in catalog.list_products(store, category="Books")] == ["Book"]
        assert [p.name for p in catalog.list_products(store, out_of_stock=True)] == ["Phone"]

    def test_profit_margin(self, store, admin):
        product = make_product(store, admin, price="15.00", cost=Decimal("10.00"))
        assert product.profit_margin == Decimal("50")
        assert make_product(store, admin, "Free").profit_margin is None


@pytest.fixture
def sell_after_read(store, cashier, monkeypatch):
    """Arrange for a checkout to land between the next product read and its write."""
    real_get_product = store.get_product

    def arm(product_id, quantity):
        def get_then_sell(pid):
            product = real_get_product(pid)
            monkeypatch.setattr(store, "get_product", real_get_product)
            create_order(store, cashier, [LineRequest(product_id, quantity)], "cash")
            return product

        monkeypatch.setattr(store, "get_product", get_then_sell)

    return arm


class TestEditsDuringCheckout:
    def test_toggle_keeps_concurrent_sale(self, store, admin, widget, sell_after_read):
        sell_after_read(widget.id, 3)

        toggled = catalog.toggle_product_status(store, admin, widget.id)

        assert toggled.active is False
        assert toggled.stock == 7
        assert store.get_product(widget.id).stock == 7

    def test_update_keeps_concurrent_sale(self, store, admin, widget, sell_after_read):
        sell_after_read(widget.id, 3)

        updated = catalog.update_product(store, admin, widget.id, price=Decimal("12.00"))

        assert updated.price == Decimal("12.00")
        assert store.get_product(widget.id).stock == 7

    def test_explicit_stock_edit_wins(self, store, admin, widget, sell_after_read):
        sell_after_read(widget.id, 3)

        catalog.update_product(store, admin, widget.id, stock=20)

        assert store.get_product(widget.id).stock == 20

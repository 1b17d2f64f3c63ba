"""Product catalog management."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .errors import ProductNotFoundError, ValidationError
from .models import CATEGORIES, Product, User, _utc_now
from .storage import Store

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_CODE_LENGTH = 50  # sku, barcode
MAX_UNIT_LENGTH = 20
STOCK_OPERATIONS = ("add", "subtract")
NULLABLE_FIELDS = ("description", "sku", "barcode", "tags")

# Fields an admin may change through update_product
EDITABLE_FIELDS = (
    "name",
    "description",
    "price",
    "cost",
    "sku",
    "barcode",
    "category",
    "stock",
    "min_stock",
    "max_stock",
    "unit",
    "tags",
    "active",
)


@dataclass
class StockChange:
    """Record of a manual stock adjustment."""

    operation: str
    quantity: int
    reason: str
    updated_by: str
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "quantity": self.quantity,
            "reason": self.reason,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at,
        }


def _reject_nulls(fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        if value is None and key not in NULLABLE_FIELDS:
            raise ValidationError("Cannot be null", field=key)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _normalize(fields: dict[str, Any]) -> dict[str, Any]:
    """Trim strings; blank optional codes become None and SKUs are upper-cased."""
    out = dict(fields)
    for key in ("name", "description", "unit"):
        if isinstance(out.get(key), str):
            out[key] = out[key].strip()
    for key in ("sku", "barcode"):
        if key in out:
            value = (out[key] or "").strip()
            out[key] = value or None
    if out.get("sku"):
        out["sku"] = out["sku"].upper()
    if out.get("description") == "":
        out["description"] = None
    if "tags" in out:
        out["tags"] = [t.strip() for t in out["tags"] or [] if t and t.strip()]
    return out


def validate_product(product: Product) -> None:
    """
    Check a product's fields.

    Raises:
        ValidationError: On the first invalid field.
    """
    if not MIN_NAME_LENGTH <= len(product.name) <= MAX_NAME_LENGTH:
        raise ValidationError(
            f"Product name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters",
            field="name",
        )
    if product.price < 0:
        raise ValidationError("Price must be a positive number", field="price")
    if product.cost < 0:
        raise ValidationError("Cost must be a positive number", field="cost")
    if product.category not in CATEGORIES:
        raise ValidationError("Invalid category", field="category")
    for name in ("stock", "min_stock", "max_stock"):
        if not _is_count(getattr(product, name)):
            raise ValidationError("Must be a non-negative integer", field=name)
    if product.description and len(product.description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters", field="description"
        )
    for name in ("sku", "barcode"):
        value = getattr(product, name)
        if value and len(value) > MAX_CODE_LENGTH:
            raise ValidationError(f"Cannot exceed {MAX_CODE_LENGTH} characters", field=name)
    if not product.unit or len(product.unit) > MAX_UNIT_LENGTH:
        raise ValidationError(
            f"Unit must be 1 to {MAX_UNIT_LENGTH} characters", field="unit"
        )


def get_product(store: Store, product_id: str) -> Product:
    """
    Get a product by ID.

    Raises:
        ProductNotFoundError: If the product doesn't exist.
    """
    product = store.get_product(product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def _matches(product: Product, term: str) -> bool:
    haystack = [product.name, product.description, product.sku, product.barcode, *product.tags]
    return any(term in value.lower() for value in haystack if value)


def search_products(store: Store, term: str) -> list[Product]:
    """Active products whose name, description, codes or tags contain ``term``."""
    needle = term.strip().lower()
    if not needle:
        return []
    return [p for p in store.list_products() if p.active and _matches(p, needle)]


def list_products(
    store: Store,
    search: str | None = None,
    category: str | None = None,
    active: bool | None = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
) -> list[Product]:
    """List products, newest first, with optional filters."""
    products = store.list_products()
    needle = (search or "").strip().lower()
    if needle:
        products = [p for p in products if _matches(p, needle)]
    if category:
        products = [p for p in products if p.category == category]
    if active is not None:
        products = [p for p in products if p.active == active]
    if low_stock:
        products = [p for p in products if p.is_low_stock]
    if out_of_stock:
        products = [p for p in products if p.is_out_of_stock]
    return products


def low_stock_products(store: Store) -> list[Product]:
    """Active products at or below their minimum stock, lowest stock first."""
    products = [p for p in store.list_products() if p.active and p.is_low_stock]
    products.sort(key=lambda p: p.stock)
    return products


def list_categories(store: Store) -> list[str]:
    """Sorted categories that have at least one active product."""
    return sorted({p.category for p in store.list_products() if p.active and p.category})


def create_product(store: Store, actor: User, name: str, price: Decimal, **fields: Any) -> Product:
    """
    Add a product to the catalog.

    Raises:
        ValidationError: If a field is invalid.
        DuplicateProductError: If the SKU or barcode is taken.
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")
    _reject_nulls({"name": name, "price": price, **fields})
    values = _normalize({"name": name, **fields})
    product = Product.create(
        values.pop("name"),
        price,
        created_by=actor.id,
        last_modified_by=actor.id,
        **values,
    )
    validate_product(product)
    store.insert_product(product)
    logger.info("Product %s (%s) created by %s", product.name, product.id, actor.name)
    return product


def update_product(store: Store, actor: User, product_id: str, **changes: Any) -> Product:
    """
    Update some of a product's fields.

    Only the fields passed are changed; stock set here replaces the count
    outright, use ``adjust_stock`` for relative changes.

    Raises:
        ProductNotFoundError: If the product doesn't exist.
        ValidationError: If a field is invalid.
        DuplicateProductError: If the SKU or barcode is taken.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")
    _reject_nulls(changes)

    product = get_product(store, product_id)
    values = _normalize(changes)
    for key, value in values.items():
        setattr(product, key, value)
    product.last_modified_by = actor.id
    validate_product(product)
    # Only the named fields are written; stock moved by a concurrent
    # checkout since the read above is kept unless stock itself is set here.
    return store.update_product(product, [*values, "last_modified_by"])


def delete_product(store: Store, product_id: str) -> Product:
    """
    Permanently remove a product.

    Past orders keep their snapshot of the product's name and price.
    """
    product = store.delete_product(product_id)
    logger.info("Product %s (%s) deleted", product.name, product.id)
    return product


def toggle_product_status(store: Store, actor: User, product_id: str) -> Product:
    """Activate a deactivated product, or deactivate an active one."""
    product = get_product(store, product_id)
    product.active = not product.active
    product.last_modified_by = actor.id
    product = store.update_product(product, ("active", "last_modified_by"))
    logger.info(
        "Product %s %s", product.name, "activated" if product.active else "deactivated"
    )
    return product


def adjust_stock(
    store: Store,
    actor: User,
    product_id: str,
    quantity: int,
    operation: str = "add",
    reason: str | None = None,
) -> tuple[Product, StockChange]:
    """
    Add or remove stock by hand (deliveries, shrinkage, corrections).

    Returns:
        Tuple of (updated product, stock change record).

    Raises:
        ValidationError: If the quantity or operation is invalid.
        ProductNotFoundError: If the product doesn't exist.
        InsufficientStockError: If subtracting more than is in stock.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive number", field="quantity")
    if operation not in STOCK_OPERATIONS:
        raise ValidationError(
            'Operation must be either "add" or "subtract"', field="operation"
        )

    delta = quantity if operation == "add" else -quantity
    product = store.adjust_stock(product_id, delta)
    change = StockChange(
        operation=operation,
        quantity=quantity,
        reason=(reason or "").strip() or f"Manual stock {operation}",
        updated_by=actor.name,
    )
    logger.info(
        "Stock for %s: %s %d by %s (%s), now %d",
        product.name,
        operation,
        quantity,
        actor.name,
        change.reason,
        product.stock,
    )
    return product, change

"""Order checkout workflow.

Checkout runs in two phases:

1. ``plan_order`` validates every cart line against the catalog and prices
   the cart. It reads the store but never writes to it.
2. ``commit_order`` persists the order, then takes stock for each product
   with the store's conditional decrement. If a decrement loses a race with
   another checkout, the decrements already applied are put back and the
   order record is removed before the error is raised.

A failure in either phase leaves no order without matching stock changes.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .errors import (
    CartProductNotFoundError,
    CashdeskError,
    InsufficientStockError,
    InvalidStateError,
    OrderNotFoundError,
    ProductInactiveError,
    ProductNotFoundError,
    ValidationError,
)
from .models import (
    DISCOUNT_TYPES,
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_REFUNDED,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    Customer,
    Discount,
    LineItem,
    Order,
    Product,
    Tax,
    User,
    _generate_id,
    _utc_now,
)
from .pricing import HUNDRED, DiscountSpec, OrderTotals, TaxSpec, compute_order_totals
from .storage import Store

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 500
MAX_CUSTOMER_NAME_LENGTH = 100
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class LineRequest:
    """One cart entry as sent by the client."""

    product_id: str
    quantity: int


@dataclass
class OrderPlan:
    """A fully validated and priced cart, ready to commit."""

    cashier_id: str
    cashier_name: str
    items: list[LineItem]
    totals: OrderTotals
    payment_method: str
    discount: DiscountSpec | None = None
    tax: TaxSpec | None = None
    customer: Customer | None = None
    notes: str = ""

    @property
    def stock_changes(self) -> dict[str, int]:
        """Units to take from each product, in cart order."""
        changes: dict[str, int] = {}
        for item in self.items:
            changes[item.product_id] = changes.get(item.product_id, 0) + item.quantity
        return changes

    def build_order(self) -> Order:
        """Create the Order record. The store assigns the order number on insert."""
        discount = Discount()
        if self.discount is not None:
            discount = Discount(
                type=self.discount.type,
                value=self.discount.value,
                amount=self.totals.discount_amount,
            )
        tax = Tax()
        if self.tax is not None:
            tax = Tax(percentage=self.tax.percentage, amount=self.totals.tax_amount)

        now = _utc_now()
        return Order(
            id=_generate_id(),
            order_number="",
            items=list(self.items),
            subtotal=self.totals.subtotal,
            discount=discount,
            tax=tax,
            total=self.totals.total,
            payment_method=self.payment_method,
            cashier_id=self.cashier_id,
            cashier_name=self.cashier_name,
            status=ORDER_COMPLETED,
            customer=self.customer,
            notes=self.notes,
            created_at=now,
            updated_at=now,
        )


# --- Request validation ---


def _validate_percentage(value: Decimal, field: str) -> None:
    if value < 0 or value > HUNDRED:
        raise ValidationError("Percentage must be between 0 and 100", field=field)


def validate_discount(discount: DiscountSpec | None) -> None:
    if discount is None:
        return
    if discount.type not in DISCOUNT_TYPES:
        raise ValidationError(
            f"Discount type must be one of: {', '.join(DISCOUNT_TYPES)}", field="discount.type"
        )
    if discount.value < 0:
        raise ValidationError("Discount cannot be negative", field="discount")
    if discount.type == "percentage":
        _validate_percentage(discount.value, "discount.percentage")


def validate_tax(tax: TaxSpec | None) -> None:
    if tax is not None:
        _validate_percentage(tax.percentage, "tax.percentage")


def validate_customer(customer: Customer | None) -> None:
    if customer is None:
        return
    if customer.name and len(customer.name) > MAX_CUSTOMER_NAME_LENGTH:
        raise ValidationError(
            f"Customer name cannot exceed {MAX_CUSTOMER_NAME_LENGTH} characters",
            field="customer.name",
        )
    if customer.email and not EMAIL_RE.match(customer.email):
        raise ValidationError("Please provide a valid customer email", field="customer.email")


def _validate_lines(requests: list[LineRequest]) -> None:
    if not requests:
        raise ValidationError("Order must contain at least one item", field="items")
    for i, req in enumerate(requests):
        if not req.product_id:
            raise ValidationError("Product ID is required", field=f"items[{i}].product")
        quantity = req.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(
                "Quantity must be a positive integer", field=f"items[{i}].quantity"
            )


# --- Phase 1: validate ---


def plan_order(
    store: Store,
    cashier: User,
    line_requests: Iterable[LineRequest],
    payment_method: str,
    customer: Customer | None = None,
    discount: DiscountSpec | None = None,
    tax: TaxSpec | None = None,
    notes: str | None = None,
) -> OrderPlan:
    """
    Validate a cart and price it, without writing anything.

    Stock is checked against the total quantity requested per product, so a
    cart listing the same product twice can't exceed its stock.

    Returns:
        The validated OrderPlan.

    Raises:
        ValidationError: If the request is malformed.
        ProductNotFoundError: If a line references an unknown product.
        ProductInactiveError: If a line references a deactivated product.
        InsufficientStockError: If a product doesn't have enough stock.
    """
    requests = list(line_requests)
    _validate_lines(requests)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method '{payment_method}'. "
            f"Must be one of: {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )
    validate_discount(discount)
    validate_tax(tax)
    validate_customer(customer)
    notes = (notes or "").strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(
            f"Notes cannot exceed {MAX_NOTES_LENGTH} characters", field="notes"
        )

    products: dict[str, Product] = {}
    requested: dict[str, int] = {}
    items: list[LineItem] = []

    for req in requests:
        product = products.get(req.product_id) or store.get_product(req.product_id)
        if product is None:
            raise CartProductNotFoundError(req.product_id)
        if not product.active:
            raise ProductInactiveError(product.id, product.name)
        products[product.id] = product

        requested[product.id] = requested.get(product.id, 0) + req.quantity
        if product.stock < requested[product.id]:
            raise InsufficientStockError(
                product.id, product.name, product.stock, requested[product.id]
            )

        items.append(
            LineItem(
                product_id=product.id,
                product_name=product.name,
                unit_price=product.price,
                quantity=req.quantity,
            )
        )

    return OrderPlan(
        cashier_id=cashier.id,
        cashier_name=cashier.name,
        items=items,
        totals=compute_order_totals(items, discount, tax),
        payment_method=payment_method,
        discount=discount,
        tax=tax,
        customer=customer,
        notes=notes,
    )


# --- Phase 2: commit ---


def _return_stock(store: Store, taken: list[tuple[str, int]]) -> None:
    """Give back stock taken by a checkout that is being undone."""
    for product_id, quantity in reversed(taken):
        try:
            store.adjust_stock(product_id, quantity)
        except CashdeskError:
            logger.exception(
                "Could not return %d unit(s) to product %s", quantity, product_id
            )


def commit_order(store: Store, plan: OrderPlan) -> Order:
    """
    Persist a validated order and take its stock.

    Returns:
        The stored Order, with its order number.

    Raises:
        InsufficientStockError: If another checkout took the stock first.
        ProductNotFoundError: If a product was deleted after validation.
        StorageError: If the store fails; nothing is left half-applied.
    """
    order = store.insert_order(plan.build_order())

    taken: list[tuple[str, int]] = []
    try:
        for product_id, quantity in plan.stock_changes.items():
            store.adjust_stock(product_id, -quantity)
            taken.append((product_id, quantity))
    except CashdeskError as e:
        logger.warning(
            "Rolling back order %s after stock update failed: %s", order.order_number, e
        )
        _return_stock(store, taken)
        try:
            store.delete_order(order.id)
        except CashdeskError:
            logger.exception("Could not remove rolled-back order %s", order.order_number)
        raise

    logger.info(
        "Order %s created by %s: %d item(s), total %s",
        order.order_number,
        order.cashier_name,
        order.total_items,
        order.total,
    )
    return order


def create_order(
    store: Store,
    cashier: User,
    line_requests: Iterable[LineRequest],
    payment_method: str,
    customer: Customer | None = None,
    discount: DiscountSpec | None = None,
    tax: TaxSpec | None = None,
    notes: str | None = None,
) -> Order:
    """Validate, price and persist a cart. See ``plan_order`` and ``commit_order``."""
    plan = plan_order(
        store,
        cashier,
        line_requests,
        payment_method,
        customer=customer,
        discount=discount,
        tax=tax,
        notes=notes,
    )
    return commit_order(store, plan)


def restore_order_stock(store: Store, order: Order) -> list[str]:
    """
    Put an order's units back into stock.

    Products deleted since the sale are skipped.

    Returns:
        IDs of the products whose stock was restored.
    """
    restored = []
    for item in order.items:
        try:
            store.adjust_stock(item.product_id, item.quantity)
        except ProductNotFoundError:
            logger.warning(
                "Product %s (%s) no longer exists; %d unit(s) from order %s not restored",
                item.product_id,
                item.product_name,
                item.quantity,
                order.order_number,
            )
            continue
        restored.append(item.product_id)
    return restored


# --- Queries and status changes ---


def get_order(store: Store, order_id: str) -> Order:
    """
    Get an order by ID.

    Raises:
        OrderNotFoundError: If the order doesn't exist.
    """
    order = store.get_order(order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def list_orders(
    store: Store,
    status: str | None = None,
    payment_method: str | None = None,
    cashier_id: str | None = None,
    search: str | None = None,
) -> list[Order]:
    """List orders, newest first, optionally matching a search term."""
    orders = store.list_orders(
        status=status, payment_method=payment_method, cashier_id=cashier_id
    )
    if not search:
        return orders

    term = search.lower()

    def matches(order: Order) -> bool:
        fields = [order.order_number, order.cashier_name]
        if order.customer is not None:
            fields += [order.customer.name or "", order.customer.email or ""]
        return any(term in f.lower() for f in fields)

    return [o for o in orders if matches(o)]


def update_order_status(
    store: Store, order_id: str, status: str, restore_stock: bool = False
) -> Order:
    """
    Move a completed order to ``cancelled``.

    Refunds go through ``refunds.refund_order``; cancelled and refunded
    orders are terminal.

    Raises:
        ValidationError: If the status is unknown or is ``refunded``.
        OrderNotFoundError: If the order doesn't exist.
        InvalidStateError: If the order is no longer completed.
    """
    if status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}", field="status"
        )
    if status == ORDER_REFUNDED:
        raise ValidationError("Use the refund operation to refund an order", field="status")

    order = get_order(store, order_id)
    if order.status == status:
        return order
    if order.status != ORDER_COMPLETED:
        raise InvalidStateError(order.order_number, order.status, status)

    order.status = ORDER_CANCELLED
    if not store.update_order(order, expected_status=ORDER_COMPLETED):
        current = get_order(store, order_id)
        raise InvalidStateError(order.order_number, current.status, status)

    if restore_stock:
        restore_order_stock(store, order)
    logger.info("Order %s cancelled", order.order_number)
    return order

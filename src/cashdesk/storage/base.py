"""Protocol definition for persistence backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Protocol

if TYPE_CHECKING:
    from ..models import Order, Product, User

# Set by the store itself, never copied from a caller's record
PROTECTED_FIELDS = ("id", "created_at", "updated_at")


def pick_fields(record: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Return the named entries of a serialized record, minus protected ones."""
    return {f: record[f] for f in fields if f not in PROTECTED_FIELDS}


class Store(Protocol):
    """Protocol for cashdesk persistence backends.

    Implementations own products, orders and users. Two operations carry
    the concurrency guarantees the workflows rely on:

    - ``adjust_stock`` is a conditional atomic update: it never lets stock
      go below zero, even under concurrent callers.
    - ``insert_order`` assigns the order number atomically with the insert,
      so two concurrent checkouts never share a number.

    Any backend failure is raised as StorageError.
    """

    name: str

    # --- Products ---

    def list_products(self) -> list[Product]:
        """Return all products, newest first."""
        ...

    def get_product(self, product_id: str) -> Product | None:
        ...

    def insert_product(self, product: Product) -> Product:
        """
        Store a new product.

        Raises:
            DuplicateProductError: If its SKU or barcode is already in use.
        """
        ...

    def update_product(self, product: Product, fields: Iterable[str]) -> Product:
        """
        Write the named fields of ``product`` onto the stored record.

        Fields not named keep their stored values, so a stale ``product``
        never rolls back a concurrent stock change.

        Returns:
            The stored product after the merge.

        Raises:
            ProductNotFoundError: If the product doesn't exist.
            DuplicateProductError: If its SKU or barcode is used by another product.
        """
        ...

    def delete_product(self, product_id: str) -> Product:
        """
        Hard-delete a product. Orders keep their snapshot fields.

        Raises:
            ProductNotFoundError: If the product doesn't exist.
        """
        ...

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        """
        Atomically add ``delta`` (may be negative) to a product's stock.

        Returns:
            The product after the change.

        Raises:
            ProductNotFoundError: If the product doesn't exist.
            InsufficientStockError: If the result would be negative; nothing
                is changed in that case.
        """
        ...

    # --- Orders ---

    def list_orders(
        self,
        status: str | None = None,
        payment_method: str | None = None,
        cashier_id: str | None = None,
    ) -> list[Order]:
        """Return matching orders, newest first."""
        ...

    def get_order(self, order_id: str) -> Order | None:
        ...

    def get_order_by_number(self, order_number: str) -> Order | None:
        ...

    def insert_order(self, order: Order) -> Order:
        """
        Store a new order, assigning ``order.order_number``.

        Returns:
            The stored order with its number set.
        """
        ...

    def update_order(self, order: Order, expected_status: str | None = None) -> bool:
        """
        Replace an existing order record.

        Args:
            order: The new order state.
            expected_status: If given, only write when the stored order
                still has this status.

        Returns:
            True if written, False if the stored status didn't match.

        Raises:
            OrderNotFoundError: If the order doesn't exist.
        """
        ...

    def delete_order(self, order_id: str) -> None:
        """Remove an order record. Used to undo a checkout that lost a stock race."""
        ...

    # --- Users ---

    def list_users(self) -> list[User]:
        ...

    def get_user(self, user_id: str) -> User | None:
        ...

    def get_user_by_email(self, email: str) -> User | None:
        ...

    def get_user_by_token(self, token: str) -> User | None:
        ...

    def insert_user(self, user: User) -> User:
        """
        Store a new user.

        Raises:
            UserExistsError: If the email is already registered.
        """
        ...

    def update_user(self, user: User, fields: Iterable[str]) -> User:
        """
        Write the named fields of ``user`` onto the stored record.

        Returns:
            The stored user after the merge.

        Raises:
            UserNotFoundError: If the user doesn't exist.
            UserExistsError: If a changed email belongs to another user.
        """
        ...

    def delete_user(self, user_id: str) -> User:
        """
        Raises:
            UserNotFoundError: If the user doesn't exist.
        """
        ...

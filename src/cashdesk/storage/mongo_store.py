"""MongoDB storage for cashdesk.

Stock changes are single ``find_one_and_update`` calls filtered on
``stock >= quantity``, so concurrent checkouts can't oversell. Order numbers
are protected by a unique index; a lost race retries with the next number.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import (
    DuplicateProductError,
    InsufficientStockError,
    OrderNotFoundError,
    ProductNotFoundError,
    StorageError,
    UserExistsError,
    UserNotFoundError,
)
from ..models import Order, Product, User, _utc_now
from ..numbering import next_order_number, order_number_prefix, utc_today
from .base import pick_fields

logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 5
SERVER_SELECTION_TIMEOUT_MS = 5000


@contextmanager
def _guard(operation: str) -> Iterator[None]:
    """Re-raise driver errors as StorageError."""
    try:
        yield
    except PyMongoError as e:
        raise StorageError(operation, str(e)) from e


def _duplicate_field(exc: DuplicateKeyError) -> str:
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    return next(iter(key_pattern), "")


def _strings_only(field: str) -> dict[str, Any]:
    """Index options that skip documents where the field is null."""
    return {"partialFilterExpression": {field: {"$type": "string"}}}


def _to_doc(record: dict[str, Any]) -> dict[str, Any]:
    doc = dict(record)
    doc["_id"] = record["id"]
    return doc


def _from_doc(doc: dict[str, Any]) -> dict[str, Any]:
    record = dict(doc)
    record.pop("_id", None)
    return record


class MongoStore:
    """Stores products, orders and users in MongoDB."""

    name = "mongo"

    def __init__(self, uri: str, db_name: str, client: MongoClient | None = None):
        """
        Initialize MongoStore and make sure indexes exist.

        Args:
            uri: MongoDB connection string.
            db_name: Database name.
            client: Pre-built client (for testing).

        Raises:
            StorageError: If the server can't be reached.
        """
        self._client = client or MongoClient(
            uri, serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS
        )
        db = self._client[db_name]
        self._products = db["products"]
        self._orders = db["orders"]
        self._users = db["users"]
        self._ensure_indexes()

    def _ensure_indexes(self) -> None:
        with _guard("create indexes"):
            self._products.create_index([("sku", ASCENDING)], unique=True, **_strings_only("sku"))
            self._products.create_index(
                [("barcode", ASCENDING)], unique=True, **_strings_only("barcode")
            )
            self._products.create_index([("created_at", DESCENDING)])
            self._orders.create_index([("order_number", ASCENDING)], unique=True)
            self._orders.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
            self._orders.create_index([("cashier_id", ASCENDING)])
            self._users.create_index([("email", ASCENDING)], unique=True)
            self._users.create_index([("token", ASCENDING)], unique=True, **_strings_only("token"))

    def close(self) -> None:
        self._client.close()

    # --- Products ---

    def list_products(self) -> list[Product]:
        with _guard("list products"):
            docs = list(self._products.find().sort("created_at", DESCENDING))
        return [Product.from_dict(_from_doc(d)) for d in docs]

    def get_product(self, product_id: str) -> Product | None:
        with _guard("get product"):
            doc = self._products.find_one({"_id": product_id})
        return Product.from_dict(_from_doc(doc)) if doc else None

    def insert_product(self, product: Product) -> Product:
        with _guard("insert product"):
            try:
                self._products.insert_one(_to_doc(product.to_dict()))
            except DuplicateKeyError as e:
                field = _duplicate_field(e) or "sku"
                raise DuplicateProductError(field, getattr(product, field, "")) from e
        return product

    def update_product(self, product: Product, fields: Iterable[str]) -> Product:
        changes = pick_fields(product.to_dict(), fields)
        changes["updated_at"] = _utc_now()
        with _guard("update product"):
            try:
                doc = self._products.find_one_and_update(
                    {"_id": product.id},
                    {"$set": changes},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError as e:
                field = _duplicate_field(e) or "sku"
                raise DuplicateProductError(field, getattr(product, field, "")) from e
        if doc is None:
            raise ProductNotFoundError(product.id)
        return Product.from_dict(_from_doc(doc))

    def delete_product(self, product_id: str) -> Product:
        with _guard("delete product"):
            doc = self._products.find_one_and_delete({"_id": product_id})
        if doc is None:
            raise ProductNotFoundError(product_id)
        return Product.from_dict(_from_doc(doc))

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        query: dict[str, Any] = {"_id": product_id}
        if delta < 0:
            query["stock"] = {"$gte": -delta}
        with _guard("adjust stock"):
            doc = self._products.find_one_and_update(
                query,
                {"$inc": {"stock": delta}, "$set": {"updated_at": _utc_now()}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                current = self._products.find_one({"_id": product_id})
        if doc is not None:
            return Product.from_dict(_from_doc(doc))
        if current is None:
            raise ProductNotFoundError(product_id)
        raise InsufficientStockError(product_id, current["name"], current["stock"], -delta)

    # --- Orders ---

    def list_orders(
        self,
        status: str | None = None,
        payment_method: str | None = None,
        cashier_id: str | None = None,
    ) -> list[Order]:
        query: dict[str, Any] = {}
        if status:
            query["status"] = status
        if payment_method:
            query["payment_method"] = payment_method
        if cashier_id:
            query["cashier_id"] = cashier_id
        with _guard("list orders"):
            docs = list(self._orders.find(query).sort("created_at", DESCENDING))
        return [Order.from_dict(_from_doc(d)) for d in docs]

    def get_order(self, order_id: str) -> Order | None:
        with _guard("get order"):
            doc = self._orders.find_one({"_id": order_id})
        return Order.from_dict(_from_doc(doc)) if doc else None

    def get_order_by_number(self, order_number: str) -> Order | None:
        with _guard("get order"):
            doc = self._orders.find_one({"order_number": order_number})
        return Order.from_dict(_from_doc(doc)) if doc else None

    def insert_order(self, order: Order) -> Order:
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            day = utc_today()
            prefix = order_number_prefix(day)
            with _guard("insert order"):
                taken = [
                    d["order_number"]
                    for d in self._orders.find(
                        {"order_number": {"$regex": f"^{re.escape(prefix)}"}},
                        {"order_number": 1},
                    )
                ]
                order.order_number = next_order_number(taken, day)
                try:
                    self._orders.insert_one(_to_doc(order.to_dict()))
                    return order
                except DuplicateKeyError as e:
                    if _duplicate_field(e) != "order_number":
                        raise
                    logger.info(
                        "Order number %s taken (attempt %d), retrying",
                        order.order_number,
                        attempt,
                    )
        raise StorageError("insert order", "could not allocate a unique order number")

    def update_order(self, order: Order, expected_status: str | None = None) -> bool:
        query: dict[str, Any] = {"_id": order.id}
        if expected_status is not None:
            query["status"] = expected_status
        order.updated_at = _utc_now()
        with _guard("update order"):
            result = self._orders.replace_one(query, _to_doc(order.to_dict()))
            if result.matched_count == 1:
                return True
            exists = self._orders.count_documents({"_id": order.id}, limit=1)
        if not exists:
            raise OrderNotFoundError(order.id)
        return False

    def delete_order(self, order_id: str) -> None:
        with _guard("delete order"):
            result = self._orders.delete_one({"_id": order_id})
        if result.deleted_count == 0:
            raise OrderNotFoundError(order_id)

    # --- Users ---

    def list_users(self) -> list[User]:
        with _guard("list users"):
            docs = list(self._users.find())
        return [User.from_dict(_from_doc(d)) for d in docs]

    def get_user(self, user_id: str) -> User | None:
        with _guard("get user"):
            doc = self._users.find_one({"_id": user_id})
        return User.from_dict(_from_doc(doc)) if doc else None

    def get_user_by_email(self, email: str) -> User | None:
        with _guard("get user"):
            doc = self._users.find_one({"email": email})
        return User.from_dict(_from_doc(doc)) if doc else None

    def get_user_by_token(self, token: str) -> User | None:
        with _guard("get user"):
            doc = self._users.find_one({"token": token})
        return User.from_dict(_from_doc(doc)) if doc else None

    def insert_user(self, user: User) -> User:
        with _guard("insert user"):
            try:
                self._users.insert_one(_to_doc(user.to_dict()))
            except DuplicateKeyError as e:
                raise UserExistsError(user.email) from e
        return user

    def update_user(self, user: User, fields: Iterable[str]) -> User:
        changes = pick_fields(user.to_dict(), fields)
        changes["updated_at"] = _utc_now()
        with _guard("update user"):
            try:
                doc = self._users.find_one_and_update(
                    {"_id": user.id},
                    {"$set": changes},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError as e:
                raise UserExistsError(user.email) from e
        if doc is None:
            raise UserNotFoundError(user.id)
        return User.from_dict(_from_doc(doc))

    def delete_user(self, user_id: str) -> User:
        with _guard("delete user"):
            doc = self._users.find_one_and_delete({"_id": user_id})
        if doc is None:
            raise UserNotFoundError(user_id)
        return User.from_dict(_from_doc(doc))

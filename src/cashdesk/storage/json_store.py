"""JSON file storage for cashdesk.

Used when no database is configured. Each collection lives in its own file
under the data directory; every read-modify-write runs under one exclusive
``fcntl`` lock so stock updates and order numbering are atomic across
threads and processes.
"""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

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
from ..numbering import next_order_number
from .base import pick_fields

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
PRODUCTS_FILE = "products.json"
ORDERS_FILE = "orders.json"
USERS_FILE = "users.json"
LOCK_FILE = ".cashdesk.lock"


class JsonStore:
    """Stores products, orders and users as JSON files."""

    name = "json"

    def __init__(self, data_dir: Path):
        """
        Initialize JsonStore.

        Args:
            data_dir: Directory holding the JSON files (created on first write).
        """
        self.data_dir = Path(data_dir)

    def _ensure_dir(self) -> None:
        """Ensure data directory exists."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the data directory for read-modify-write operations."""
        try:
            self._ensure_dir()
            lock_file = open(self.data_dir / LOCK_FILE, "w")
        except OSError as e:
            raise StorageError("lock", str(e)) from e
        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self, filename: str, key: str) -> list[dict[str, Any]]:
        """Load one collection from disk."""
        path = self.data_dir / filename
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"read {filename}", str(e)) from e
        return data.get(key, [])

    def _save(self, filename: str, key: str, records: list[dict[str, Any]]) -> None:
        """Save one collection to disk atomically."""
        self._ensure_dir()

        # Write to temp file then rename (atomic on POSIX)
        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{key}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"schema_version": SCHEMA_VERSION, key: records}, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.data_dir / filename)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StorageError(f"write {filename}", str(e)) from e

    # --- Products ---

    def _load_products(self) -> list[dict[str, Any]]:
        return self._load(PRODUCTS_FILE, "products")

    def _save_products(self, records: list[dict[str, Any]]) -> None:
        self._save(PRODUCTS_FILE, "products", records)

    @staticmethod
    def _check_unique(records: list[dict[str, Any]], product: Product) -> None:
        for p in records:
            if p["id"] == product.id:
                continue
            if product.sku and p.get("sku") == product.sku:
                raise DuplicateProductError("sku", product.sku)
            if product.barcode and p.get("barcode") == product.barcode:
                raise DuplicateProductError("barcode", product.barcode)

    def list_products(self) -> list[Product]:
        products = [Product.from_dict(p) for p in self._load_products()]
        products.sort(key=lambda p: p.created_at, reverse=True)
        return products

    def get_product(self, product_id: str) -> Product | None:
        for p in self._load_products():
            if p["id"] == product_id:
                return Product.from_dict(p)
        return None

    def insert_product(self, product: Product) -> Product:
        with self._lock():
            records = self._load_products()
            self._check_unique(records, product)
            records.append(product.to_dict())
            self._save_products(records)
        return product

    def update_product(self, product: Product, fields: Iterable[str]) -> Product:
        changes = pick_fields(product.to_dict(), fields)
        with self._lock():
            records = self._load_products()
            for i, p in enumerate(records):
                if p["id"] != product.id:
                    continue
                merged = {**p, **changes, "updated_at": _utc_now()}
                stored = Product.from_dict(merged)
                self._check_unique(records, stored)
                records[i] = merged
                self._save_products(records)
                return stored
        raise ProductNotFoundError(product.id)

    def delete_product(self, product_id: str) -> Product:
        with self._lock():
            records = self._load_products()
            for i, p in enumerate(records):
                if p["id"] == product_id:
                    removed = Product.from_dict(records.pop(i))
                    self._save_products(records)
                    return removed
        raise ProductNotFoundError(product_id)

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        with self._lock():
            records = self._load_products()
            for p in records:
                if p["id"] != product_id:
                    continue
                new_stock = p["stock"] + delta
                if new_stock < 0:
                    raise InsufficientStockError(product_id, p["name"], p["stock"], -delta)
                p["stock"] = new_stock
                p["updated_at"] = _utc_now()
                self._save_products(records)
                return Product.from_dict(p)
        raise ProductNotFoundError(product_id)

    # --- Orders ---

    def _load_orders(self) -> list[dict[str, Any]]:
        return self._load(ORDERS_FILE, "orders")

    def _save_orders(self, records: list[dict[str, Any]]) -> None:
        self._save(ORDERS_FILE, "orders", records)

    def list_orders(
        self,
        status: str | None = None,
        payment_method: str | None = None,
        cashier_id: str | None = None,
    ) -> list[Order]:
        orders = []
        for o in self._load_orders():
            if status and o.get("status") != status:
                continue
            if payment_method and o.get("payment_method") != payment_method:
                continue
            if cashier_id and o.get("cashier_id") != cashier_id:
                continue
            orders.append(Order.from_dict(o))
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def get_order(self, order_id: str) -> Order | None:
        for o in self._load_orders():
            if o["id"] == order_id:
                return Order.from_dict(o)
        return None

    def get_order_by_number(self, order_number: str) -> Order | None:
        for o in self._load_orders():
            if o.get("order_number") == order_number:
                return Order.from_dict(o)
        return None

    def insert_order(self, order: Order) -> Order:
        with self._lock():
            records = self._load_orders()
            order.order_number = next_order_number(o.get("order_number", "") for o in records)
            records.append(order.to_dict())
            self._save_orders(records)
        return order

    def update_order(self, order: Order, expected_status: str | None = None) -> bool:
        with self._lock():
            records = self._load_orders()
            for i, o in enumerate(records):
                if o["id"] != order.id:
                    continue
                if expected_status is not None and o.get("status") != expected_status:
                    return False
                order.updated_at = _utc_now()
                records[i] = order.to_dict()
                self._save_orders(records)
                return True
        raise OrderNotFoundError(order.id)

    def delete_order(self, order_id: str) -> None:
        with self._lock():
            records = self._load_orders()
            remaining = [o for o in records if o["id"] != order_id]
            if len(remaining) == len(records):
                raise OrderNotFoundError(order_id)
            self._save_orders(remaining)

    # --- Users ---

    def _load_users(self) -> list[dict[str, Any]]:
        return self._load(USERS_FILE, "users")

    def _save_users(self, records: list[dict[str, Any]]) -> None:
        self._save(USERS_FILE, "users", records)

    def list_users(self) -> list[User]:
        return [User.from_dict(u) for u in self._load_users()]

    def get_user(self, user_id: str) -> User | None:
        for u in self._load_users():
            if u["id"] == user_id:
                return User.from_dict(u)
        return None

    def get_user_by_email(self, email: str) -> User | None:
        for u in self._load_users():
            if u["email"] == email:
                return User.from_dict(u)
        return None

    def get_user_by_token(self, token: str) -> User | None:
        for u in self._load_users():
            if u.get("token") and u["token"] == token:
                return User.from_dict(u)
        return None

    def insert_user(self, user: User) -> User:
        with self._lock():
            records = self._load_users()
            if any(u["email"] == user.email for u in records):
                raise UserExistsError(user.email)
            records.append(user.to_dict())
            self._save_users(records)
        return user

    def update_user(self, user: User, fields: Iterable[str]) -> User:
        changes = pick_fields(user.to_dict(), fields)
        with self._lock():
            records = self._load_users()
            for i, u in enumerate(records):
                if u["id"] != user.id:
                    continue
                if "email" in changes and any(
                    other["email"] == changes["email"] and other["id"] != user.id
                    for other in records
                ):
                    raise UserExistsError(changes["email"])
                records[i] = {**u, **changes, "updated_at": _utc_now()}
                self._save_users(records)
                return User.from_dict(records[i])
        raise UserNotFoundError(user.id)

    def delete_user(self, user_id: str) -> User:
        with self._lock():
            records = self._load_users()
            for i, u in enumerate(records):
                if u["id"] == user_id:
                    removed = User.from_dict(records.pop(i))
                    self._save_users(records)
                    return removed
        raise UserNotFoundError(user_id)

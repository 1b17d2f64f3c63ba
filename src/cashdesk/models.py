"""Data models for cashdesk."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
import uuid

from .money import ZERO, format_money, to_decimal

CATEGORIES = (
    "Electronics",
    "Clothing",
    "Food & Beverage",
    "Books",
    "Health & Beauty",
    "Home & Garden",
    "Sports",
    "Toys",
    "Automotive",
    "Other",
)
PAYMENT_METHODS = ("cash", "card", "digital_wallet", "bank_transfer")
DISCOUNT_TYPES = ("percentage", "fixed")

ORDER_COMPLETED = "completed"
ORDER_CANCELLED = "cancelled"
ORDER_REFUNDED = "refunded"
ORDER_STATUSES = (ORDER_COMPLETED, ORDER_CANCELLED, ORDER_REFUNDED)

ROLE_ADMIN = "admin"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_CASHIER)


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new record ID."""
    return str(uuid.uuid4())


@dataclass
class Product:
    """A sellable catalog item."""

    id: str
    name: str
    price: Decimal
    category: str = "Other"
    stock: int = 0
    cost: Decimal = ZERO
    min_stock: int = 5  # low-stock threshold, reporting only
    max_stock: int = 1000
    description: str | None = None
    sku: str | None = None
    barcode: str | None = None
    unit: str = "piece"
    tags: list[str] = field(default_factory=list)
    active: bool = True
    created_by: str | None = None
    last_modified_by: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock <= 0

    @property
    def profit_margin(self) -> Decimal | None:
        """Markup over cost in percent, or None when cost is unknown."""
        if self.cost > 0:
            return (self.price - self.cost) / self.cost * 100
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": str(self.price),
            "cost": str(self.cost),
            "sku": self.sku,
            "barcode": self.barcode,
            "category": self.category,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "unit": self.unit,
            "tags": list(self.tags),
            "active": self.active,
            "created_by": self.created_by,
            "last_modified_by": self.last_modified_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        return cls(
            id=data["id"],
            name=data["name"],
            price=to_decimal(data["price"]),
            category=data.get("category", "Other"),
            stock=int(data.get("stock", 0)),
            cost=to_decimal(data.get("cost", "0")),
            min_stock=int(data.get("min_stock", 5)),
            max_stock=int(data.get("max_stock", 1000)),
            description=data.get("description"),
            sku=data.get("sku"),
            barcode=data.get("barcode"),
            unit=data.get("unit", "piece"),
            tags=list(data.get("tags", [])),
            active=data.get("active", True),
            created_by=data.get("created_by"),
            last_modified_by=data.get("last_modified_by"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(cls, name: str, price: Decimal, **fields: Any) -> "Product":
        """Create a new product with generated ID and timestamps."""
        now = _utc_now()
        return cls(
            id=_generate_id(),
            name=name,
            price=price,
            created_at=now,
            updated_at=now,
            **fields,
        )


@dataclass
class LineItem:
    """One product + quantity entry of a persisted order.

    Name and unit price are snapshots taken at checkout, so the order stays
    accurate after the product is edited or deleted.
    """

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "subtotal": str(self.subtotal),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        return cls(
            product_id=data["product_id"],
            product_name=data["product_name"],
            unit_price=to_decimal(data["unit_price"]),
            quantity=int(data["quantity"]),
        )


@dataclass
class Discount:
    """Discount applied to an order.

    ``value`` is what the cashier entered (a percentage or a fixed amount,
    depending on ``type``); ``amount`` is what was actually taken off.
    """

    type: str = "percentage"
    value: Decimal = ZERO
    amount: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "value": str(self.value),
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Discount":
        return cls(
            type=data.get("type", "percentage"),
            value=to_decimal(data.get("value", "0")),
            amount=to_decimal(data.get("amount", "0")),
        )


@dataclass
class Tax:
    """Tax applied to an order after discount."""

    percentage: Decimal = ZERO
    amount: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {"percentage": str(self.percentage), "amount": str(self.amount)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tax":
        return cls(
            percentage=to_decimal(data.get("percentage", "0")),
            amount=to_decimal(data.get("amount", "0")),
        )


@dataclass
class Customer:
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Customer":
        return cls(
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone"),
        )


@dataclass
class Refund:
    """Refund record attached to a refunded order."""

    amount: Decimal
    reason: str
    refunded_by: str
    refunded_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": str(self.amount),
            "reason": self.reason,
            "refunded_by": self.refunded_by,
            "refunded_at": self.refunded_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Refund":
        return cls(
            amount=to_decimal(data["amount"]),
            reason=data.get("reason", ""),
            refunded_by=data.get("refunded_by", ""),
            refunded_at=data.get("refunded_at", ""),
        )


@dataclass
class Order:
    """A checked-out cart.

    Totals are computed once at creation and never recomputed from live
    product prices.
    """

    id: str
    order_number: str  # ORD-YYYYMMDD-NNNN, assigned by the store on insert
    items: list[LineItem]
    subtotal: Decimal
    discount: Discount
    tax: Tax
    total: Decimal
    payment_method: str
    cashier_id: str
    cashier_name: str
    status: str = ORDER_COMPLETED
    payment_status: str = "completed"
    customer: Customer | None = None
    notes: str = ""
    refund: Refund | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "order_number": self.order_number,
            "items": [item.to_dict() for item in self.items],
            "subtotal": str(self.subtotal),
            "discount": self.discount.to_dict(),
            "tax": self.tax.to_dict(),
            "total": str(self.total),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.customer is not None:
            result["customer"] = self.customer.to_dict()
        if self.refund is not None:
            result["refund"] = self.refund.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        customer = None
        if data.get("customer"):
            customer = Customer.from_dict(data["customer"])
        refund = None
        if data.get("refund"):
            refund = Refund.from_dict(data["refund"])
        return cls(
            id=data["id"],
            order_number=data.get("order_number", ""),
            items=[LineItem.from_dict(i) for i in data.get("items", [])],
            subtotal=to_decimal(data["subtotal"]),
            discount=Discount.from_dict(data.get("discount", {})),
            tax=Tax.from_dict(data.get("tax", {})),
            total=to_decimal(data["total"]),
            payment_method=data["payment_method"],
            cashier_id=data["cashier_id"],
            cashier_name=data.get("cashier_name", ""),
            status=data.get("status", ORDER_COMPLETED),
            payment_status=data.get("payment_status", "completed"),
            customer=customer,
            notes=data.get("notes", ""),
            refund=refund,
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    def receipt_data(self) -> dict[str, Any]:
        """Printable receipt, amounts rounded to cents."""
        receipt: dict[str, Any] = {
            "order_number": self.order_number,
            "date": self.created_at,
            "items": [
                {
                    "name": item.product_name,
                    "quantity": item.quantity,
                    "unit_price": format_money(item.unit_price),
                    "subtotal": format_money(item.subtotal),
                }
                for item in self.items
            ],
            "subtotal": format_money(self.subtotal),
            "discount": format_money(self.discount.amount),
            "tax": format_money(self.tax.amount),
            "total": format_money(self.total),
            "payment_method": self.payment_method,
            "cashier": self.cashier_name,
            "status": self.status,
        }
        if self.customer is not None:
            receipt["customer"] = self.customer.to_dict()
        return receipt


@dataclass
class User:
    """A cashier or administrator account."""

    id: str
    name: str
    email: str
    password_hash: str
    role: str = ROLE_CASHIER
    active: bool = True
    token: str | None = None  # current session token
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "password_hash": self.password_hash,
            "role": self.role,
            "active": self.active,
            "token": self.token,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Dict without credentials, safe to return to clients."""
        data = self.to_dict()
        del data["password_hash"]
        del data["token"]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            password_hash=data["password_hash"],
            role=data.get("role", ROLE_CASHIER),
            active=data.get("active", True),
            token=data.get("token"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls, name: str, email: str, password_hash: str, role: str = ROLE_CASHIER
    ) -> "User":
        """Create a new user with generated ID and timestamps."""
        now = _utc_now()
        return cls(
            id=_generate_id(),
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            created_at=now,
            updated_at=now,
        )

"""FastAPI REST API for the cashdesk point of sale."""

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import __version__, auth, catalog, orders, refunds
from .config import Settings
from .errors import (
    AlreadyRefundedError,
    AuthenticationError,
    CartProductNotFoundError,
    CashdeskError,
    DuplicateProductError,
    InsufficientStockError,
    InvalidRefundAmountError,
    InvalidStateError,
    OrderNotFoundError,
    PermissionDeniedError,
    ProductInactiveError,
    ProductNotFoundError,
    StorageError,
    UserExistsError,
    UserNotFoundError,
    ValidationError,
)
from .models import ROLE_ADMIN, ROLE_CASHIER, Customer, Order, Product, User
from .money import format_money
from .orders import LineRequest
from .pricing import DiscountSpec, TaxSpec
from .storage import Store, open_store

logger = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class RequestModel(BaseModel):
    """Request bodies accept both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(RequestModel):
    email: str
    password: str


class UserSchema(BaseModel):
    id: str
    name: str
    email: str
    role: str
    active: bool
    created_at: str
    updated_at: str


class LoginResponse(BaseModel):
    token: str
    user: UserSchema


class VerifyResponse(BaseModel):
    valid: bool
    user: UserSchema


class RegisterRequest(RequestModel):
    name: str
    email: str
    password: str
    role: str = ROLE_CASHIER


class ChangePasswordRequest(RequestModel):
    current_password: str
    new_password: str


class UserUpdateRequest(RequestModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    active: Optional[bool] = Field(default=None, alias="isActive")


class ProductSchema(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: str
    cost: str
    sku: Optional[str] = None
    barcode: Optional[str] = None
    category: str
    stock: int
    min_stock: int
    max_stock: int
    unit: str
    tags: list[str]
    active: bool
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: str
    updated_at: str
    is_low_stock: bool
    is_out_of_stock: bool
    profit_margin: Optional[str] = None  # percent over cost, 2 decimals


class ProductCreateRequest(RequestModel):
    name: str
    price: Decimal
    description: Optional[str] = None
    cost: Decimal = Decimal("0")
    sku: Optional[str] = None
    barcode: Optional[str] = None
    category: str = "Other"
    stock: int = 0
    min_stock: int = 5
    max_stock: int = 1000
    unit: str = "piece"
    tags: list[str] = Field(default_factory=list)


class ProductUpdateRequest(RequestModel):
    name: Optional[str] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = None
    min_stock: Optional[int] = None
    max_stock: Optional[int] = None
    unit: Optional[str] = None
    tags: Optional[list[str]] = None
    active: Optional[bool] = None


class StockUpdateRequest(RequestModel):
    quantity: int
    operation: str = "add"
    reason: Optional[str] = None


class StockChangeSchema(BaseModel):
    operation: str
    quantity: int
    reason: str
    updated_by: str
    updated_at: str


class StockUpdateResponse(BaseModel):
    product: ProductSchema
    stock_change: StockChangeSchema


class PaginationSchema(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next_page: bool
    has_prev_page: bool


class ProductListResponse(BaseModel):
    products: list[ProductSchema]
    pagination: PaginationSchema


class LineItemSchema(BaseModel):
    product_id: str
    product_name: str
    unit_price: str
    quantity: int
    subtotal: str


class DiscountSchema(BaseModel):
    type: str
    value: str
    amount: str


class TaxSchema(BaseModel):
    percentage: str
    amount: str


class CustomerSchema(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class RefundSchema(BaseModel):
    amount: str
    reason: str
    refunded_by: str
    refunded_at: str


class OrderSchema(BaseModel):
    id: str
    order_number: str
    items: list[LineItemSchema]
    subtotal: str
    discount: DiscountSchema
    tax: TaxSchema
    total: str
    payment_method: str
    payment_status: str
    status: str
    cashier_id: str
    cashier_name: str
    customer: Optional[CustomerSchema] = None
    notes: str = ""
    refund: Optional[RefundSchema] = None
    created_at: str
    updated_at: str


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    pagination: PaginationSchema


class UserListResponse(BaseModel):
    users: list[UserSchema]
    pagination: PaginationSchema


class OrderItemRequest(RequestModel):
    product: str = Field(..., description="Product ID")
    quantity: int


class DiscountRequest(RequestModel):
    """Either ``value``, or ``percentage`` / ``amount`` matching ``type``."""

    type: str = "percentage"
    value: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    amount: Optional[Decimal] = None

    def to_spec(self) -> DiscountSpec:
        value = self.value
        if value is None:
            value = self.percentage if self.type == "percentage" else self.amount
        if value is None:
            field = "percentage" if self.type == "percentage" else "amount"
            raise ValidationError(f"Discount of type {self.type!r} needs a {field}", field=field)
        return DiscountSpec(type=self.type, value=value)


class TaxRequest(RequestModel):
    percentage: Decimal = Decimal("0")


class CustomerRequest(RequestModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class OrderCreateRequest(RequestModel):
    items: list[OrderItemRequest]
    payment_method: str
    customer: Optional[CustomerRequest] = None
    discount: Optional[DiscountRequest] = None
    tax: Optional[TaxRequest] = None
    notes: Optional[str] = None


class RefundRequest(RequestModel):
    amount: Optional[Decimal] = Field(None, description="Defaults to the order total")
    reason: Optional[str] = None
    restore_stock: bool = True


class RefundResponse(BaseModel):
    order: OrderSchema
    refund_amount: str
    stock_restored: bool


class OrderStatusRequest(RequestModel):
    status: str
    restore_stock: bool = False


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


# --- Dependencies ---


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_store() -> Store:
    """Open the configured store once; shared by all requests."""
    return open_store(get_settings())


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    store: Store = Depends(get_store),
) -> User:
    """Resolve the ``Authorization: Bearer <token>`` header to a user."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[len("bearer "):].strip()
    return auth.user_for_token(store, token)


def require_admin(user: User = Depends(get_current_user)) -> User:
    return auth.require_role(user, ROLE_ADMIN)


# --- Helper Functions ---


def user_to_schema(user: User) -> UserSchema:
    return UserSchema(**user.to_public_dict())


def product_to_schema(product: Product) -> ProductSchema:
    margin = product.profit_margin
    return ProductSchema(
        **product.to_dict(),
        is_low_stock=product.is_low_stock,
        is_out_of_stock=product.is_out_of_stock,
        profit_margin=format_money(margin) if margin is not None else None,
    )


def order_to_schema(order: Order) -> OrderSchema:
    return OrderSchema(**order.to_dict())


def paginate(items: list, page: int, limit: int) -> tuple[list, PaginationSchema]:
    """Slice one page out of ``items``. Pages are 1-based."""
    total = len(items)
    total_pages = (total + limit - 1) // limit
    start = (page - 1) * limit
    return items[start:start + limit], PaginationSchema(
        current_page=page,
        total_pages=total_pages,
        total=total,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )


def _check_order_access(user: User, order: Order) -> None:
    """Cashiers may only see their own orders."""
    if not user.is_admin and order.cashier_id != user.id:
        raise PermissionDeniedError((ROLE_ADMIN,))


# --- App ---


app = FastAPI(
    title="cashdesk API",
    description="Point of sale: catalog, checkout and refunds",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handlers ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    CartProductNotFoundError: 400,
    ProductInactiveError: 400,
    InsufficientStockError: 400,
    AlreadyRefundedError: 400,
    InvalidStateError: 400,
    InvalidRefundAmountError: 400,
    AuthenticationError: 401,
    PermissionDeniedError: 403,
    ProductNotFoundError: 404,
    OrderNotFoundError: 404,
    UserNotFoundError: 404,
    DuplicateProductError: 409,
    UserExistsError: 409,
    StorageError: 503,
}


@app.exception_handler(CashdeskError)
async def cashdesk_error_handler(request: Request, exc: CashdeskError) -> JSONResponse:
    """Map CashdeskError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed bodies and query strings as plain validation errors."""
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
    return JSONResponse(
        status_code=400,
        content={"detail": "; ".join(messages), "error_type": ValidationError.code},
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check(store: Store = Depends(get_store)):
    """
    Health check endpoint.

    Reports the storage backend and whether it answers.
    """
    try:
        product_count = len(store.list_products())
    except StorageError as e:
        return {"status": "error", "storage": store.name, "detail": str(e)}
    return {"status": "ok", "storage": store.name, "product_count": product_count}


# --- Auth Endpoints ---


@app.post("/api/auth/login", response_model=LoginResponse)
def login(request: LoginRequest, store: Store = Depends(get_store)):
    """Exchange email and password for a bearer token."""
    user, token = auth.authenticate(store, request.email, request.password)
    return LoginResponse(token=token, user=user_to_schema(user))


@app.get("/api/auth/me", response_model=UserSchema)
def me(user: User = Depends(get_current_user)):
    return user_to_schema(user)


@app.post("/api/auth/logout", status_code=204)
def logout(user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    """Invalidate the current token."""
    auth.logout(store, user)


@app.get("/api/auth/verify", response_model=VerifyResponse)
def verify_token(user: User = Depends(get_current_user)):
    """Check that the bearer token is still valid."""
    return VerifyResponse(valid=True, user=user_to_schema(user))


@app.post("/api/auth/register", response_model=UserSchema, status_code=201)
def register(
    request: RegisterRequest,
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Create a user account (admin only)."""
    user = auth.register_user(
        store, request.name, request.email, request.password, role=request.role
    )
    return user_to_schema(user)


@app.post("/api/auth/change-password", status_code=204)
def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    auth.change_password(store, user, request.current_password, request.new_password)


# --- User Endpoints ---


@app.get("/api/users", response_model=UserListResponse)
def list_users(
    search: Optional[str] = Query(default=None),
    role: Optional[str] = Query(default=None),
    active: Optional[bool] = Query(default=None, alias="isActive"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """List user accounts, newest first (admin only)."""
    users = auth.list_users(store, search=search, role=role, active=active)
    page_items, pagination = paginate(users, page, limit)
    return UserListResponse(
        users=[user_to_schema(u) for u in page_items],
        pagination=pagination,
    )


@app.get("/api/users/{user_id}", response_model=UserSchema)
def get_user(
    user_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    """Get an account (admin, or the account's owner)."""
    auth.require_admin_or_self(user, user_id)
    return user_to_schema(auth.get_user(store, user_id))


@app.put("/api/users/{user_id}", response_model=UserSchema)
def update_user(
    user_id: str,
    request: UserUpdateRequest,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """Update an account. Non-admins may only change their own name."""
    changes = request.model_dump(exclude_unset=True)
    return user_to_schema(auth.update_user(store, user, user_id, **changes))


@app.delete("/api/users/{user_id}", response_model=UserSchema)
def delete_user(
    user_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_store)
):
    """Permanently delete an account (admin only)."""
    return user_to_schema(auth.delete_user(store, admin, user_id))


@app.post("/api/users/{user_id}/toggle-status", response_model=UserSchema)
def toggle_user_status(
    user_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_store)
):
    return user_to_schema(auth.toggle_user_status(store, admin, user_id))


# --- Product Endpoints ---


@app.get("/api/products", response_model=ProductListResponse)
def list_products(
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    active: Optional[bool] = Query(default=None, alias="isActive"),
    low_stock: bool = Query(default=False, alias="lowStock"),
    out_of_stock: bool = Query(default=False, alias="outOfStock"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """List products, newest first."""
    products = catalog.list_products(
        store,
        search=search,
        category=category,
        active=active,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
    )
    page_items, pagination = paginate(products, page, limit)
    return ProductListResponse(
        products=[product_to_schema(p) for p in page_items],
        pagination=pagination,
    )


@app.get("/api/products/low-stock", response_model=list[ProductSchema])
def list_low_stock_products(
    user: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    """Active products at or below their minimum stock."""
    return [product_to_schema(p) for p in catalog.low_stock_products(store)]


@app.get("/api/products/categories", response_model=list[str])
def list_categories(user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    return catalog.list_categories(store)


@app.get("/api/products/{product_id}", response_model=ProductSchema)
def get_product(
    product_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    return product_to_schema(catalog.get_product(store, product_id))


@app.post("/api/products", response_model=ProductSchema, status_code=201)
def create_product(
    request: ProductCreateRequest,
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Add a product (admin only)."""
    fields = request.model_dump(exclude={"name", "price"})
    product = catalog.create_product(store, admin, request.name, request.price, **fields)
    return product_to_schema(product)


@app.put("/api/products/{product_id}", response_model=ProductSchema)
def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Update the fields present in the body (admin only)."""
    changes = request.model_dump(exclude_unset=True)
    product = catalog.update_product(store, admin, product_id, **changes)
    return product_to_schema(product)


@app.delete("/api/products/{product_id}", response_model=ProductSchema)
def delete_product(
    product_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_store)
):
    """Permanently delete a product (admin only)."""
    return product_to_schema(catalog.delete_product(store, product_id))


@app.post("/api/products/{product_id}/toggle-status", response_model=ProductSchema)
def toggle_product_status(
    product_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_store)
):
    return product_to_schema(catalog.toggle_product_status(store, admin, product_id))


@app.post("/api/products/{product_id}/update-stock", response_model=StockUpdateResponse)
def update_product_stock(
    product_id: str,
    request: StockUpdateRequest,
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Add or remove stock by hand (admin only)."""
    product, change = catalog.adjust_stock(
        store,
        admin,
        product_id,
        request.quantity,
        operation=request.operation,
        reason=request.reason,
    )
    return StockUpdateResponse(
        product=product_to_schema(product),
        stock_change=StockChangeSchema(**change.to_dict()),
    )


# --- Order Endpoints ---


@app.get("/api/orders", response_model=OrderListResponse)
def list_orders(
    status: Optional[str] = Query(default=None),
    payment_method: Optional[str] = Query(default=None, alias="paymentMethod"),
    cashier: Optional[str] = Query(default=None, description="Cashier ID (admin only)"),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """List orders, newest first. Cashiers only see their own."""
    cashier_id = cashier if user.is_admin else user.id
    result = orders.list_orders(
        store,
        status=status,
        payment_method=payment_method,
        cashier_id=cashier_id,
        search=search,
    )
    page_items, pagination = paginate(result, page, limit)
    return OrderListResponse(
        orders=[order_to_schema(o) for o in page_items],
        pagination=pagination,
    )


@app.get("/api/orders/{order_id}", response_model=OrderSchema)
def get_order(
    order_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    order = orders.get_order(store, order_id)
    _check_order_access(user, order)
    return order_to_schema(order)


@app.get("/api/orders/{order_id}/receipt")
def get_order_receipt(
    order_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)
):
    """Printable receipt with amounts rounded to cents."""
    order = orders.get_order(store, order_id)
    _check_order_access(user, order)
    return order.receipt_data()


@app.post("/api/orders", response_model=OrderSchema, status_code=201)
def create_order(
    request: OrderCreateRequest,
    user: User = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """Check out a cart as the current user."""
    customer = Customer(**request.customer.model_dump()) if request.customer else None
    order = orders.create_order(
        store,
        user,
        [LineRequest(product_id=i.product, quantity=i.quantity) for i in request.items],
        request.payment_method,
        customer=customer,
        discount=request.discount.to_spec() if request.discount else None,
        tax=TaxSpec(percentage=request.tax.percentage) if request.tax else None,
        notes=request.notes,
    )
    return order_to_schema(order)


@app.post("/api/orders/{order_id}/refund", response_model=RefundResponse)
def refund_order(
    order_id: str,
    request: RefundRequest,
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Refund a completed order (admin only)."""
    result = refunds.refund_order(
        store,
        order_id,
        admin,
        amount=request.amount,
        reason=request.reason,
        restore_stock=request.restore_stock,
    )
    return RefundResponse(
        order=order_to_schema(result.order),
        refund_amount=str(result.refund_amount),
        stock_restored=result.stock_restored,
    )


@app.put("/api/orders/{order_id}/status", response_model=OrderSchema)
def update_order_status(
    order_id: str,
    request: OrderStatusRequest,
    admin: User = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Cancel a completed order (admin only)."""
    order = orders.update_order_status(
        store, order_id, request.status, restore_stock=request.restore_stock
    )
    return order_to_schema(order)

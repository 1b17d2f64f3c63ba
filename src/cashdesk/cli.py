"""Command-line interface for cashdesk."""

import argparse
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

from . import __version__, auth, catalog, orders
from .config import Settings
from .errors import CashdeskError, UserNotFoundError
from .models import ROLES, Order, User
from .money import format_money, to_decimal
from .storage import Store, open_store

SAMPLE_PRODUCTS = [
    # name, price, cost, sku, category, stock
    ("Apple iPhone 15", "999.99", "750.00", "IPHONE15", "Electronics", 25),
    ("Wireless Mouse", "29.99", "15.00", "MOUSE-WL", "Electronics", 75),
    ("Nike Air Force 1", "120.00", "60.00", "NIKE-AF1", "Clothing", 50),
    ("Coffee Beans - Premium Blend", "24.99", "12.00", "COFFEE-PREM", "Food & Beverage", 100),
    ("Energy Drink", "3.99", "1.50", "ENERGY-SF", "Food & Beverage", 150),
    ("Notebook - A4", "5.99", "2.50", "NB-A4", "Books", 200),
]


def configure_logging(level: str, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment, with --data-dir / --storage applied."""
    settings = Settings.from_env()
    if getattr(args, "data_dir", None):
        settings.data_dir = Path(args.data_dir)
    if getattr(args, "storage", None):
        settings.storage = args.storage
    return settings


def get_admin(store: Store, settings: Settings) -> User:
    """The default admin, used as the actor for catalog commands."""
    admin = store.get_user_by_email(settings.admin_email)
    if admin is None:
        raise UserNotFoundError(f"{settings.admin_email} (run 'cashdesk init' first)")
    return admin


def format_order_line(order: Order) -> str:
    return (
        f"{order.order_number}  {order.created_at[:19]}  {order.status:<9}  "
        f"{order.payment_method:<14}  {format_money(order.total):>10}  {order.cashier_name}"
    )


def cmd_init(args: argparse.Namespace) -> int:
    """Create the default admin and, optionally, sample products."""
    try:
        settings = get_settings(args)
        store = open_store(settings)

        admin = auth.ensure_default_admin(
            store, settings.admin_email, settings.admin_password, settings.admin_name
        )
        if admin is not None:
            print(f"Created admin user: {admin.email}")
        else:
            print(f"Admin user already exists: {settings.admin_email}")
            admin = get_admin(store, settings)

        if args.sample:
            if store.list_products():
                print("Catalog is not empty, skipping sample products")
            else:
                for name, price, cost, sku, category, stock in SAMPLE_PRODUCTS:
                    catalog.create_product(
                        store,
                        admin,
                        name,
                        Decimal(price),
                        cost=Decimal(cost),
                        sku=sku,
                        category=category,
                        stock=stock,
                    )
                print(f"Added {len(SAMPLE_PRODUCTS)} sample product(s)")

        print(f"Storage: {store.name}")
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_list(args: argparse.Namespace) -> int:
    """List catalog products."""
    try:
        store = open_store(get_settings(args))
        if args.low_stock:
            products = catalog.low_stock_products(store)
        else:
            products = catalog.list_products(store, search=args.search)

        if args.json:
            print(json.dumps([p.to_dict() for p in products], indent=2))
            return 0

        if not products:
            print("No products.")
            return 0

        for p in products:
            flags = []
            if not p.active:
                flags.append("inactive")
            if p.is_out_of_stock:
                flags.append("out of stock")
            elif p.is_low_stock:
                flags.append("low stock")
            suffix = f"  [{', '.join(flags)}]" if flags else ""
            print(
                f"{p.id[:8]}  {p.sku or '-':<12}  {p.name:<32}  "
                f"{format_money(p.price):>10}  stock {p.stock}{suffix}"
            )
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_add(args: argparse.Namespace) -> int:
    """Add a product as the default admin."""
    try:
        settings = get_settings(args)
        store = open_store(settings)
        admin = get_admin(store, settings)
        try:
            price = to_decimal(args.price)
            cost = to_decimal(args.cost)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        product = catalog.create_product(
            store,
            admin,
            args.name,
            price,
            cost=cost,
            sku=args.sku,
            barcode=args.barcode,
            category=args.category,
            stock=args.stock,
        )
        print(f"Added product {product.id}: {product.name} ({format_money(product.price)})")
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_list(args: argparse.Namespace) -> int:
    """List orders, newest first."""
    try:
        store = open_store(get_settings(args))
        result = orders.list_orders(store, status=args.status, search=args.search)

        if args.json:
            print(json.dumps([o.to_dict() for o in result], indent=2))
            return 0

        if not result:
            print("No orders.")
            return 0

        for order in result:
            print(format_order_line(order))
        print(f"\n{len(result)} order(s)")
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_receipt(args: argparse.Namespace) -> int:
    """Print a receipt by order ID or order number."""
    try:
        store = open_store(get_settings(args))
        order = store.get_order_by_number(args.order) or orders.get_order(store, args.order)
        receipt = order.receipt_data()

        if args.json:
            print(json.dumps(receipt, indent=2))
            return 0

        print(f"Order {receipt['order_number']}  {receipt['date'][:19]}")
        print(f"Cashier: {receipt['cashier']}")
        print()
        for item in receipt["items"]:
            print(
                f"  {item['quantity']:>3} x {item['name']:<32} "
                f"{item['unit_price']:>10} {item['subtotal']:>10}"
            )
        print()
        print(f"  {'Subtotal':<47}{receipt['subtotal']:>10}")
        print(f"  {'Discount':<47}{receipt['discount']:>10}")
        print(f"  {'Tax':<47}{receipt['tax']:>10}")
        print(f"  {'Total':<47}{receipt['total']:>10}")
        print(f"\nPaid by {receipt['payment_method']}, status {receipt['status']}")
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_users_add(args: argparse.Namespace) -> int:
    """Register a cashier or admin account."""
    try:
        store = open_store(get_settings(args))
        user = auth.register_user(store, args.name, args.email, args.password, role=args.role)
        print(f"Added {user.role} {user.email} ({user.id})")
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_users_list(args: argparse.Namespace) -> int:
    """List user accounts, newest first."""
    try:
        store = open_store(get_settings(args))
        users = auth.list_users(store, role=args.role)

        if not users:
            print("No users.")
            return 0

        for user in users:
            status = "" if user.active else "  (deactivated)"
            print(f"{user.role:<8} {user.email:<32} {user.name}{status}")
        return 0

    except CashdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        settings = get_settings(args)
        print("Starting cashdesk API server...")
        print(f"Storage: {settings.storage}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "cashdesk.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
        return 0

    except (CashdeskError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="cashdesk",
        description="Point of sale: catalog, checkout and refunds",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--data-dir", help="JSON store directory (overrides CASHDESK_DATA_DIR)")
    parser.add_argument(
        "--storage", choices=["json", "mongo"], help="Storage backend (overrides CASHDESK_STORAGE)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Create the default admin account")
    init_parser.add_argument(
        "--sample", action="store_true", help="Add sample products to an empty catalog"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # products
    products_parser = subparsers.add_parser("products", help="Manage the catalog")
    products_subparsers = products_parser.add_subparsers(dest="products_command")

    products_list_parser = products_subparsers.add_parser("list", help="List products")
    products_list_parser.add_argument("--search", "-s", help="Filter by name, code or tag")
    products_list_parser.add_argument(
        "--low-stock", action="store_true", help="Only active products at or below min stock"
    )
    products_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    products_add_parser = products_subparsers.add_parser("add", help="Add a product")
    products_add_parser.add_argument("name", help="Product name")
    products_add_parser.add_argument("price", help="Unit price, e.g. 12.99")
    products_add_parser.add_argument("--cost", default="0", help="Unit cost")
    products_add_parser.add_argument("--stock", type=int, default=0, help="Initial stock")
    products_add_parser.add_argument("--category", default="Other", help="Category")
    products_add_parser.add_argument("--sku", help="Stock keeping unit")
    products_add_parser.add_argument("--barcode", help="Barcode")

    # orders
    orders_parser = subparsers.add_parser("orders", help="Inspect orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")

    orders_list_parser = orders_subparsers.add_parser("list", help="List orders")
    orders_list_parser.add_argument(
        "--status", choices=["completed", "cancelled", "refunded"], help="Filter by status"
    )
    orders_list_parser.add_argument("--search", "-s", help="Order number, cashier or customer")
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    orders_receipt_parser = orders_subparsers.add_parser("receipt", help="Print a receipt")
    orders_receipt_parser.add_argument("order", help="Order ID or order number")
    orders_receipt_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # users
    users_parser = subparsers.add_parser("users", help="Manage user accounts")
    users_subparsers = users_parser.add_subparsers(dest="users_command")

    users_add_parser = users_subparsers.add_parser("add", help="Add a user")
    users_add_parser.add_argument("name", help="Display name")
    users_add_parser.add_argument("email", help="Login email")
    users_add_parser.add_argument("--password", "-p", required=True, help="Password")
    users_add_parser.add_argument("--role", choices=ROLES, default="cashier", help="Role")

    users_list_parser = users_subparsers.add_parser("list", help="List users")
    users_list_parser.add_argument("--role", choices=ROLES, help="Only this role")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(Settings.from_env().log_level, verbose=args.verbose)

    subcommands = {
        "products": ("products_command", {"list": cmd_products_list, "add": cmd_products_add}),
        "orders": ("orders_command", {"list": cmd_orders_list, "receipt": cmd_orders_receipt}),
        "users": ("users_command", {"add": cmd_users_add, "list": cmd_users_list}),
    }
    if args.command in subcommands:
        dest, handlers = subcommands[args.command]
        sub = getattr(args, dest, None)
        if not sub:
            parser.parse_args([args.command, "--help"])
            return 0
        return handlers[sub](args)

    commands = {
        "init": cmd_init,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())

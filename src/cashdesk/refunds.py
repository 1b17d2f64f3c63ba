"""Order refund workflow."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from .errors import (
    AlreadyRefundedError,
    InvalidRefundAmountError,
    InvalidStateError,
)
from .money import quantize_money
from .models import ORDER_CANCELLED, ORDER_COMPLETED, ORDER_REFUNDED, Order, Refund, User
from .orders import get_order, restore_order_stock
from .storage import Store

logger = logging.getLogger(__name__)

DEFAULT_REFUND_REASON = "Refund processed"


@dataclass
class RefundResult:
    order: Order
    refund_amount: Decimal
    stock_restored: bool


def check_refundable(order: Order, amount: Decimal | None = None) -> Decimal:
    """
    Check that an order can be refunded and resolve the refund amount.

    Args:
        order: The order to refund.
        amount: Requested amount (default: the full order total).

    Returns:
        The amount to refund.

    Raises:
        AlreadyRefundedError: If the order was already refunded.
        InvalidStateError: If the order was cancelled.
        InvalidRefundAmountError: If the amount is not positive or exceeds the
            total (exact, or as rounded to cents on the receipt).
    """
    if order.status == ORDER_REFUNDED:
        raise AlreadyRefundedError(order.order_number)
    if order.status == ORDER_CANCELLED:
        raise InvalidStateError(order.order_number, order.status, ORDER_REFUNDED)

    refund_amount = order.total if amount is None else amount
    # The customer paid the total rounded to cents, so that is refundable too
    ceiling = max(order.total, quantize_money(order.total))
    if refund_amount <= 0 or refund_amount > ceiling:
        raise InvalidRefundAmountError(refund_amount, ceiling)
    return refund_amount


def refund_order(
    store: Store,
    order_id: str,
    actor: User,
    amount: Decimal | None = None,
    reason: str | None = None,
    restore_stock: bool = True,
) -> RefundResult:
    """
    Refund a completed order.

    The refunded state is written only if the stored order is still
    ``completed``, so of two concurrent refunds exactly one wins. Stock is
    restored after that write succeeds, never before.

    Args:
        store: Persistence backend.
        order_id: Order ID.
        actor: The admin issuing the refund.
        amount: Amount to refund (default: the full order total).
        reason: Free-text reason.
        restore_stock: Put the sold units back into stock.

    Returns:
        RefundResult with the updated order.

    Raises:
        OrderNotFoundError: If the order doesn't exist.
        AlreadyRefundedError, InvalidStateError, InvalidRefundAmountError:
            See ``check_refundable``. The order is left unchanged.
    """
    order = get_order(store, order_id)
    refund_amount = check_refundable(order, amount)

    order.status = ORDER_REFUNDED
    order.payment_status = ORDER_REFUNDED
    order.refund = Refund(
        amount=refund_amount,
        reason=(reason or "").strip() or DEFAULT_REFUND_REASON,
        refunded_by=actor.id,
    )

    if not store.update_order(order, expected_status=ORDER_COMPLETED):
        # Someone else changed the order since we read it
        check_refundable(get_order(store, order_id), amount)
        raise InvalidStateError(order.order_number, ORDER_COMPLETED, ORDER_REFUNDED)

    if restore_stock:
        restore_order_stock(store, order)

    logger.info(
        "Order %s refunded by %s: %s (stock restored: %s)",
        order.order_number,
        actor.name,
        refund_amount,
        restore_stock,
    )
    return RefundResult(order=order, refund_amount=refund_amount, stock_restored=restore_stock)

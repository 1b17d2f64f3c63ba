"""Human-readable order numbers: ``ORD-YYYYMMDD-NNNN``.

The sequence restarts every UTC day. Stores must call ``next_order_number``
atomically with the insert that uses its result.
"""

import re
from datetime import date, datetime, timezone
from typing import Iterable

ORDER_NUMBER_RE = re.compile(r"^ORD-(\d{8})-(\d{4,})$")
SEQUENCE_WIDTH = 4


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def order_number_prefix(day: date) -> str:
    """Prefix shared by all order numbers of a day, e.g. ``ORD-20260118-``."""
    return f"ORD-{day:%Y%m%d}-"


def parse_order_number(order_number: str) -> tuple[str, int] | None:
    """
    Split an order number into its date part and sequence.

    Returns:
        (yyyymmdd, sequence), or None for numbers in any other format
        (e.g. legacy ``ORD-001`` numbers).
    """
    match = ORDER_NUMBER_RE.match(order_number)
    if not match:
        return None
    return match.group(1), int(match.group(2))


def next_order_number(existing: Iterable[str], today: date | None = None) -> str:
    """
    Derive the next order number for a day.

    Args:
        existing: Order numbers already issued (any day; others are ignored).
        today: Day to number for (default: current UTC date).

    Returns:
        ``ORD-<date>-<seq>`` where seq is one more than the highest sequence
        already used that day, zero-padded to 4 digits.
    """
    day = today or utc_today()
    day_str = f"{day:%Y%m%d}"

    highest = 0
    for number in existing:
        parsed = parse_order_number(number)
        if parsed and parsed[0] == day_str:
            highest = max(highest, parsed[1])

    return f"{order_number_prefix(day)}{highest + 1:0{SEQUENCE_WIDTH}d}"

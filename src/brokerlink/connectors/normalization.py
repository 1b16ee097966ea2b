"""Normalization of exchange-native vocabularies onto the unified model."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from .protocol import OrderStatus, PositionSide, from_millis, utcnow

logger = logging.getLogger(__name__)

PENDING = OrderStatus.PENDING
FILLED = OrderStatus.FILLED
CANCELLED = OrderStatus.CANCELLED
REJECTED = OrderStatus.REJECTED

# Delta states are compared lower-cased.
DELTA_STATUS: dict[str, OrderStatus] = {
    "open": PENDING,
    "pending": PENDING,
    "filled": FILLED,
    "closed": FILLED,
    "cancelled": CANCELLED,
    "rejected": REJECTED,
}

BINANCE_STATUS: dict[str, OrderStatus] = {
    "NEW": PENDING,
    "PARTIALLY_FILLED": PENDING,
    "FILLED": FILLED,
    "CANCELED": CANCELLED,
    "EXPIRED": CANCELLED,
    "REJECTED": REJECTED,
}

BYBIT_STATUS: dict[str, OrderStatus] = {
    "New": PENDING,
    "PartiallyFilled": PENDING,
    "Filled": FILLED,
    "Cancelled": CANCELLED,
    "Rejected": CANCELLED,
    "Deactivated": REJECTED,
}

OKX_STATUS: dict[str, OrderStatus] = {
    "live": PENDING,
    "partially_filled": PENDING,
    "filled": FILLED,
    "canceled": CANCELLED,
    "rejected": REJECTED,
}


def map_order_status(
    native: str | None,
    vocabulary: Mapping[str, OrderStatus],
    *,
    case_insensitive: bool = False,
) -> OrderStatus:
    """Map a native order status; unknown values are treated as pending."""
    if not native:
        return PENDING
    key = native.lower() if case_insensitive else native
    status = vocabulary.get(key)
    if status is None:
        logger.debug("Unmapped order status %r, treating as pending", native)
        return PENDING
    return status


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse an exchange numeric field; empty or missing values give ``default``."""
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(result) else result


def first_float(*values: Any, default: float = 0.0) -> float:
    """First value that parses to a non-zero float."""
    for value in values:
        parsed = to_float(value)
        if parsed:
            return parsed
    return default


def side_from_size(size: float) -> PositionSide:
    return PositionSide.LONG if size > 0 else PositionSide.SHORT


def split_balance(total: float, available: float) -> tuple[float, float]:
    """Split a wallet total into ``(free, locked)`` with ``free + locked == total``.

    Available can exceed the wallet total on margin accounts carrying
    unrealized profit; free is capped at the total in that case.
    """
    free = min(max(available, 0.0), total)
    return free, total - free


def percentage_of(numerator: float, denominator: float) -> float:
    """``numerator / denominator * 100``, or 0.0 when the denominator is zero."""
    if not denominator:
        return 0.0
    return numerator / denominator * 100


def format_decimal(value: float) -> str:
    """Plain decimal string for order fields (``1.0`` -> ``"1"``, no exponent)."""
    return format(Decimal(str(value)).normalize(), "f")


def parse_timestamp(value: Any) -> datetime:
    """Exchange timestamp (epoch ms/us or ISO-8601) as an aware datetime."""
    if value is None or value == "":
        return utcnow()
    if isinstance(value, str) and not value.lstrip("-").isdigit():
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    number = int(value)
    if number > 10**14:
        return datetime.fromtimestamp(number / 1_000_000, tz=timezone.utc)
    return from_millis(number)

"""Domain model and protocol shared by every exchange connector."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..settings import BrokerCredentials
    from .events import EventChannel


class ExchangeType(str, Enum):
    """Exchanges with a connector implementation."""

    DELTA = "DELTA"
    BINANCE = "BINANCE"
    BYBIT = "BYBIT"
    OKX = "OKX"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class OrderStatus(str, Enum):
    """Normalized order state."""

    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_millis(value: int | str | float | None) -> datetime:
    """Exchange epoch-millisecond timestamp as an aware datetime."""
    if value in (None, ""):
        return utcnow()
    return datetime.fromtimestamp(int(float(value)) / 1000, tz=timezone.utc)


@dataclass
class TradeOrder:
    """Unified order request."""

    symbol: str
    side: OrderSide
    type: OrderType
    quantity: float
    price: float | None = None
    stop_price: float | None = None
    time_in_force: TimeInForce = TimeInForce.GTC

    def __post_init__(self) -> None:
        self.side = OrderSide(self.side)
        self.type = OrderType(self.type)
        self.time_in_force = TimeInForce(self.time_in_force)
        if self.quantity <= 0:
            raise ValueError(f"Order quantity must be positive, got {self.quantity}")
        if self.type is OrderType.LIMIT and self.price is None:
            raise ValueError("Limit orders require a price")


@dataclass
class TradeResult:
    """Normalized order state as reported by the exchange."""

    order_id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    status: OrderStatus
    timestamp: datetime = field(default_factory=utcnow)
    fees: float | None = None


@dataclass
class AccountBalance:
    """Wallet balance for one asset."""

    asset: str
    free: float
    locked: float

    @property
    def total(self) -> float:
        return self.free + self.locked


@dataclass
class Position:
    """Open derivatives position."""

    symbol: str
    side: PositionSide
    size: float
    entry_price: float
    mark_price: float
    pnl: float
    percentage: float


@dataclass
class MarketData:
    """Ticker update pushed over a market-data stream."""

    symbol: str
    price: float
    change_24h: float
    volume_24h: float
    timestamp: datetime = field(default_factory=utcnow)


class ExchangeConnector(Protocol):
    """Unified trading and market-data contract."""

    exchange_type: ExchangeType
    credentials: "BrokerCredentials"
    events: "EventChannel"

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        """Validate credentials, then open the market-data stream.

        Raises:
            BrokerError: Classified failure; the connector stays disconnected
        """
        ...

    async def disconnect(self) -> None:
        """Close the stream and REST session. Idempotent."""
        ...

    async def validate_credentials(self) -> bool:
        """Low-cost authenticated call.

        Returns:
            False on authentication failures; other failures propagate
        """
        ...

    async def health_check(self) -> bool:
        """validate_credentials() with every broker failure reported as False."""
        ...

    async def get_account_balance(self) -> list[AccountBalance]:
        """Non-zero wallet balances."""
        ...

    async def get_positions(self) -> list[Position]:
        """Open, non-flat positions."""
        ...

    async def place_order(self, order: TradeOrder) -> TradeResult:
        """Submit an order and normalize the synchronous acknowledgment."""
        ...

    async def cancel_order(self, order_id: str, symbol: str) -> bool:
        """Cancel an order.

        Returns:
            Whether the exchange confirmed the cancellation
        """
        ...

    async def get_order_status(self, order_id: str, symbol: str) -> TradeResult:
        """Re-fetch one order's current state."""
        ...

    async def subscribe_to_market_data(self, symbols: list[str]) -> None:
        """Open the stream if needed and send the subscribe frame."""
        ...

    async def unsubscribe_from_market_data(self, symbols: list[str]) -> None:
        """Send the unsubscribe frame; no-op when no stream is open."""
        ...

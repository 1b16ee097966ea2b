"""Exchange connectors and the registry that owns them."""

from .base import BaseConnector
from .binance import BinanceFuturesConnector
from .bybit import BybitConnector
from .delta import DeltaExchangeConnector
from .events import ERROR, MARKET_DATA, EventChannel
from .okx import OKXConnector
from .protocol import (
    AccountBalance,
    ExchangeConnector,
    ExchangeType,
    MarketData,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionSide,
    TimeInForce,
    TradeOrder,
    TradeResult,
)
from .rate_limit import FixedWindowRateLimiter
from .registry import (
    BROKER_INFO,
    CONNECTOR_CLASSES,
    BrokerInfo,
    ConnectorRegistry,
    create_connector,
    instance_key,
)

__all__ = [
    "AccountBalance",
    "BaseConnector",
    "BinanceFuturesConnector",
    "BrokerInfo",
    "BROKER_INFO",
    "BybitConnector",
    "CONNECTOR_CLASSES",
    "ConnectorRegistry",
    "create_connector",
    "DeltaExchangeConnector",
    "ERROR",
    "EventChannel",
    "ExchangeConnector",
    "ExchangeType",
    "FixedWindowRateLimiter",
    "instance_key",
    "MARKET_DATA",
    "MarketData",
    "OKXConnector",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "PositionSide",
    "TimeInForce",
    "TradeOrder",
    "TradeResult",
]

"""Keyed cache and lifecycle owner for connector instances."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Type

from ..errors import BrokerError, UnsupportedExchangeError
from ..settings import BrokerCredentials
from .base import BaseConnector
from .binance import BinanceFuturesConnector
from .bybit import BybitConnector
from .delta import DeltaExchangeConnector
from .events import ERROR, MARKET_DATA, EventChannel
from .okx import OKXConnector
from .protocol import ExchangeType, MarketData

logger = logging.getLogger(__name__)


CONNECTOR_CLASSES: dict[ExchangeType, Type[BaseConnector]] = {
    ExchangeType.DELTA: DeltaExchangeConnector,
    ExchangeType.BINANCE: BinanceFuturesConnector,
    ExchangeType.BYBIT: BybitConnector,
    ExchangeType.OKX: OKXConnector,
}


@dataclass(frozen=True)
class BrokerInfo:
    """Static metadata about a supported broker."""

    name: str
    base_url: str
    ws_url: str
    features: tuple[str, ...]


BROKER_INFO: dict[ExchangeType, BrokerInfo] = {
    ExchangeType.DELTA: BrokerInfo(
        name="Delta Exchange",
        base_url="https://api.delta.exchange",
        ws_url="wss://socket.delta.exchange",
        features=("futures", "options", "perpetual"),
    ),
    ExchangeType.BINANCE: BrokerInfo(
        name="Binance Futures",
        base_url="https://fapi.binance.com",
        ws_url="wss://fstream.binance.com",
        features=("futures", "perpetual", "margin"),
    ),
    ExchangeType.BYBIT: BrokerInfo(
        name="Bybit",
        base_url="https://api.bybit.com",
        ws_url="wss://stream.bybit.com",
        features=("futures", "perpetual", "spot"),
    ),
    ExchangeType.OKX: BrokerInfo(
        name="OKX",
        base_url="https://www.okx.com",
        ws_url="wss://ws.okx.com",
        features=("futures", "perpetual", "spot", "options"),
    ),
}


def resolve_exchange_type(exchange: ExchangeType | str) -> ExchangeType:
    """Case-insensitive lookup of a supported exchange.

    Raises:
        UnsupportedExchangeError: If no connector exists for ``exchange``
    """
    if isinstance(exchange, ExchangeType):
        return exchange
    try:
        return ExchangeType(str(exchange).strip().upper())
    except ValueError:
        supported = ", ".join(t.value for t in ExchangeType)
        raise UnsupportedExchangeError(
            f"Unsupported broker type: {exchange}. Supported brokers: {supported}"
        ) from None


def instance_key(
    exchange: ExchangeType | str,
    credentials: BrokerCredentials,
    instance_id: str | None = None,
) -> str:
    """Registry key: the caller's id, else exchange type plus credential fingerprint."""
    if instance_id:
        return instance_id
    return f"{resolve_exchange_type(exchange).value}_{credentials.fingerprint}"


def create_connector(
    exchange: ExchangeType | str,
    credentials: BrokerCredentials,
    **options: Any,
) -> BaseConnector:
    """Build a new, unregistered connector.

    Args:
        exchange: Exchange type (DELTA, BINANCE, BYBIT, OKX)
        credentials: Decrypted API credentials
        **options: Connector options (request_timeout, recv_window_ms, ...)

    Raises:
        UnsupportedExchangeError: If the exchange is not supported
        ValueError: If required credentials are missing
    """
    connector_class = CONNECTOR_CLASSES[resolve_exchange_type(exchange)]
    return connector_class(credentials, **options)


class ConnectorRegistry:
    """Creates, caches and tears down connector instances.

    Each connector's ``market_data`` and ``error`` events are re-emitted on
    ``registry.events`` as ``(instance_key, payload)``.
    """

    def __init__(self, **connector_options: Any):
        self.connector_options = connector_options
        self.events = EventChannel("registry")
        self._instances: dict[str, BaseConnector] = {}
        self._exchange_types: dict[str, ExchangeType] = {}
        self._detach: dict[str, list[Callable[[], None]]] = {}
        self._connecting: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._instances

    def keys(self) -> list[str]:
        return list(self._instances)

    def get(self, instance_id: str) -> BaseConnector | None:
        return self._instances.get(instance_id)

    def get_or_create(
        self,
        exchange: ExchangeType | str,
        credentials: BrokerCredentials,
        instance_id: str | None = None,
    ) -> BaseConnector:
        """Cached connector for the key, constructing it on first lookup."""
        return self._lookup(exchange, credentials, instance_id)[1]

    def _lookup(
        self,
        exchange: ExchangeType | str,
        credentials: BrokerCredentials,
        instance_id: str | None,
    ) -> tuple[str, BaseConnector]:
        exchange_type = resolve_exchange_type(exchange)
        key = instance_key(exchange_type, credentials, instance_id)

        existing = self._instances.get(key)
        if existing is not None:
            return key, existing

        connector = create_connector(exchange_type, credentials, **self.connector_options)
        self._instances[key] = connector
        self._exchange_types[key] = exchange_type
        self._detach[key] = [
            connector.events.on(MARKET_DATA, lambda data: self._forward_market_data(key, data)),
            connector.events.on(ERROR, lambda error: self._forward_error(key, error)),
        ]
        logger.info("Created %s broker instance: %s", exchange_type.value, key)
        return key, connector

    async def connect(
        self,
        exchange: ExchangeType | str,
        credentials: BrokerCredentials,
        instance_id: str | None = None,
    ) -> BaseConnector:
        """Cached connector, connected if it was not already.

        Concurrent calls for one key share a single in-flight connect.
        """
        key, connector = self._lookup(exchange, credentials, instance_id)
        if connector.is_connected:
            return connector

        pending = self._connecting.get(key)
        if pending is None:
            pending = asyncio.ensure_future(connector.connect())
            self._connecting[key] = pending
            pending.add_done_callback(lambda _f: self._connecting.pop(key, None))
        await asyncio.shield(pending)
        return connector

    async def disconnect(self, instance_id: str) -> None:
        connector = self._instances.get(instance_id)
        if connector is None:
            return
        try:
            await connector.disconnect()
        finally:
            self._evict(instance_id)
        logger.info("Disconnected and removed broker instance: %s", instance_id)

    async def disconnect_all(self) -> None:
        """Disconnect every instance concurrently; failures are logged, not raised."""
        items = list(self._instances.items())
        results = await asyncio.gather(
            *(connector.disconnect() for _, connector in items),
            return_exceptions=True,
        )
        for (key, _), result in zip(items, results):
            if isinstance(result, BaseException):
                logger.error("Error disconnecting broker %s: %s", key, result)
            else:
                logger.info("Disconnected broker instance: %s", key)

        for key, _ in items:
            self._evict(key)
        logger.info("All broker instances disconnected")

    async def health_check_all(self) -> dict[str, bool]:
        items = list(self._instances.items())
        results = await asyncio.gather(
            *(connector.health_check() for _, connector in items),
            return_exceptions=True,
        )

        health: dict[str, bool] = {}
        for (key, _), result in zip(items, results):
            if isinstance(result, BaseException):
                logger.error("Health check failed for broker %s: %s", key, result)
                health[key] = False
            else:
                health[key] = bool(result)
        return health

    def get_connected_brokers(self) -> list[str]:
        return [key for key, connector in self._instances.items() if connector.is_connected]

    def exchange_type_of(self, instance_id: str) -> ExchangeType | None:
        return self._exchange_types.get(instance_id)

    @staticmethod
    def get_supported_brokers() -> list[ExchangeType]:
        return list(CONNECTOR_CLASSES)

    @staticmethod
    def get_broker_info(exchange: ExchangeType | str) -> BrokerInfo:
        return BROKER_INFO[resolve_exchange_type(exchange)]

    def _forward_market_data(self, key: str, data: MarketData) -> None:
        logger.debug("Market data from %s: %s", key, data)
        self.events.emit(MARKET_DATA, key, data)

    def _forward_error(self, key: str, error: BrokerError) -> None:
        logger.error("Broker %s error: %s", key, error)
        self.events.emit(ERROR, key, error)

    def _evict(self, key: str) -> None:
        self._instances.pop(key, None)
        self._exchange_types.pop(key, None)
        for detach in self._detach.pop(key, []):
            detach()

    async def __aenter__(self) -> "ConnectorRegistry":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect_all()

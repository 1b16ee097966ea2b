"""Tests for the connector registry."""

import asyncio
import hashlib
from unittest.mock import AsyncMock

import pytest

from brokerlink.connectors.binance import BinanceFuturesConnector
from brokerlink.connectors.bybit import BybitConnector
from brokerlink.connectors.events import ERROR, MARKET_DATA
from brokerlink.connectors.okx import OKXConnector
from brokerlink.connectors.protocol import ExchangeType, MarketData
from brokerlink.connectors.registry import ConnectorRegistry, create_connector, instance_key
from brokerlink.errors import BrokerError, UnsupportedExchangeError
from brokerlink.settings import BrokerCredentials


@pytest.fixture
def registry():
    return ConnectorRegistry()


@pytest.fixture
def other_credentials():
    return BrokerCredentials(api_key="another_key_000", api_secret="another_secret_000")


class TestGetOrCreate:
    """Instance identity per key."""

    def test_same_key_same_instance(self, registry, credentials):
        first = registry.get_or_create(ExchangeType.BYBIT, credentials)
        second = registry.get_or_create(ExchangeType.BYBIT, credentials)

        assert first is second
        assert len(registry) == 1
        assert isinstance(first, BybitConnector)

    def test_string_type_is_case_insensitive(self, registry, credentials):
        first = registry.get_or_create("binance", credentials)
        second = registry.get_or_create(ExchangeType.BINANCE, credentials)

        assert first is second
        assert isinstance(first, BinanceFuturesConnector)

    def test_distinct_credentials_distinct_instances(self, registry, credentials, other_credentials):
        first = registry.get_or_create(ExchangeType.BYBIT, credentials)
        second = registry.get_or_create(ExchangeType.BYBIT, other_credentials)

        assert first is not second
        assert len(registry) == 2

    def test_same_credentials_different_exchanges(self, registry, credentials):
        bybit = registry.get_or_create(ExchangeType.BYBIT, credentials)
        binance = registry.get_or_create(ExchangeType.BINANCE, credentials)

        assert bybit is not binance

    def test_explicit_instance_id(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials, "bybit-main")

        assert registry.get("bybit-main") is connector
        assert "bybit-main" in registry
        assert registry.exchange_type_of("bybit-main") is ExchangeType.BYBIT

    def test_key_does_not_contain_api_key(self, credentials, api_key):
        key = instance_key(ExchangeType.BYBIT, credentials)

        expected = hashlib.sha256(api_key.encode()).hexdigest()[:12]
        assert key == f"BYBIT_{expected}"
        assert api_key not in key

    def test_unsupported_exchange(self, registry, credentials):
        with pytest.raises(UnsupportedExchangeError, match="KRAKEN"):
            registry.get_or_create("KRAKEN", credentials)
        assert len(registry) == 0

    def test_construction_failure_is_not_cached(self, registry, credentials):
        with pytest.raises(ValueError, match="passphrase"):
            registry.get_or_create(ExchangeType.OKX, credentials)
        assert len(registry) == 0

    def test_connector_options_are_passed_through(self, credentials):
        registry = ConnectorRegistry(request_timeout=3.5)

        connector = registry.get_or_create(ExchangeType.DELTA, credentials)

        assert connector.request_timeout == 3.5

    def test_create_connector(self, okx_credentials):
        connector = create_connector("okx", okx_credentials, td_mode="isolated")

        assert isinstance(connector, OKXConnector)
        assert connector.td_mode == "isolated"


class TestBrokerInfo:
    def test_supported_brokers(self):
        assert ConnectorRegistry.get_supported_brokers() == [
            ExchangeType.DELTA,
            ExchangeType.BINANCE,
            ExchangeType.BYBIT,
            ExchangeType.OKX,
        ]

    def test_broker_info(self):
        info = ConnectorRegistry.get_broker_info("okx")

        assert info.name == "OKX"
        assert info.base_url == "https://www.okx.com"
        assert "options" in info.features

    def test_broker_info_unknown(self):
        with pytest.raises(UnsupportedExchangeError):
            ConnectorRegistry.get_broker_info("FTX")


class TestConnect:
    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_attempt(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials)

        async def slow_connect():
            await asyncio.sleep(0.01)
            connector._connected = True

        connector.connect = AsyncMock(side_effect=slow_connect)

        results = await asyncio.gather(
            registry.connect(ExchangeType.BYBIT, credentials),
            registry.connect(ExchangeType.BYBIT, credentials),
        )

        assert results[0] is results[1] is connector
        assert connector.connect.await_count == 1
        assert registry.get_connected_brokers() == [instance_key(ExchangeType.BYBIT, credentials)]

    @pytest.mark.asyncio
    async def test_already_connected_is_not_reconnected(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials)
        connector._connected = True
        connector.connect = AsyncMock()

        await registry.connect(ExchangeType.BYBIT, credentials)

        connector.connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_connect_can_be_retried(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials)
        connector.connect = AsyncMock(side_effect=[BrokerError("down"), None])

        with pytest.raises(BrokerError):
            await registry.connect(ExchangeType.BYBIT, credentials)
        await registry.connect(ExchangeType.BYBIT, credentials)

        assert connector.connect.await_count == 2


class TestTeardown:
    @pytest.mark.asyncio
    async def test_disconnect_evicts(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials, "main")
        connector.disconnect = AsyncMock()

        await registry.disconnect("main")

        connector.disconnect.assert_awaited_once()
        assert registry.get("main") is None
        assert registry.get_or_create(ExchangeType.BYBIT, credentials, "main") is not connector

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, registry):
        await registry.disconnect("missing")

    @pytest.mark.asyncio
    async def test_disconnect_all_tolerates_failures(self, registry, credentials, other_credentials):
        failing = registry.get_or_create(ExchangeType.BYBIT, credentials)
        healthy = registry.get_or_create(ExchangeType.BINANCE, other_credentials)
        failing.disconnect = AsyncMock(side_effect=RuntimeError("socket already gone"))
        healthy.disconnect = AsyncMock()

        await registry.disconnect_all()

        healthy.disconnect.assert_awaited_once()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_async_context_drains(self, credentials):
        async with ConnectorRegistry() as registry:
            connector = registry.get_or_create(ExchangeType.BYBIT, credentials)
            connector.disconnect = AsyncMock()

        connector.disconnect.assert_awaited_once()
        assert len(registry) == 0


class TestHealthCheckAll:
    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, registry, credentials, other_credentials):
        good = registry.get_or_create(ExchangeType.BYBIT, credentials, "good")
        bad = registry.get_or_create(ExchangeType.BINANCE, other_credentials, "bad")
        down = registry.get_or_create(ExchangeType.DELTA, other_credentials, "down")
        good.health_check = AsyncMock(return_value=True)
        bad.health_check = AsyncMock(side_effect=RuntimeError("unexpected"))
        down.health_check = AsyncMock(return_value=False)

        assert await registry.health_check_all() == {"good": True, "bad": False, "down": False}

    @pytest.mark.asyncio
    async def test_empty_registry(self, registry):
        assert await registry.health_check_all() == {}


class TestEventForwarding:
    def test_market_data_forwarded_with_key(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials, "main")
        received = []
        registry.events.on(MARKET_DATA, lambda key, data: received.append((key, data)))
        tick = MarketData("BTCUSDT", 50000.0, 1.0, 10.0)

        connector.events.emit(MARKET_DATA, tick)

        assert received == [("main", tick)]

    def test_errors_forwarded_with_key(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials, "main")
        received = []
        registry.events.on(ERROR, lambda key, error: received.append((key, error)))
        error = BrokerError("stream dropped")

        connector.events.emit(ERROR, error)

        assert received == [("main", error)]

    @pytest.mark.asyncio
    async def test_forwarding_detached_on_disconnect(self, registry, credentials):
        connector = registry.get_or_create(ExchangeType.BYBIT, credentials, "main")
        received = []
        registry.events.on(MARKET_DATA, lambda key, data: received.append(key))

        await registry.disconnect("main")
        connector.events.emit(MARKET_DATA, MarketData("BTCUSDT", 1.0, 0.0, 0.0))

        assert received == []
        assert connector.events.listener_count(MARKET_DATA) == 0

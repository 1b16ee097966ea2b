"""Tests for the host runtime and entry point."""

import asyncio
import signal
from unittest.mock import AsyncMock, patch

import pytest

from brokerlink import app as app_module
from brokerlink.connectors.bybit import BybitConnector
from brokerlink.connectors.events import MARKET_DATA
from brokerlink.connectors.protocol import MarketData
from brokerlink.di import build_container
from brokerlink.errors import InvalidCredentialsError
from brokerlink.runtime import run, start_brokers
from brokerlink.settings import BrokerCredentials, BrokerSettings, Settings


def make_settings(**brokers):
    return Settings(request_timeout=4, brokers=brokers)


def bybit_broker(**overrides):
    values = {
        "exchange": "bybit",
        "credentials": BrokerCredentials(api_key="rt-key", api_secret="rt-secret"),
        "symbols": ["BTCUSDT"],
    }
    values.update(overrides)
    return BrokerSettings(**values)


class TestContainer:
    def test_registry_uses_request_timeout(self):
        container = build_container(make_settings(main=bybit_broker()))

        connector = container.registry.get_or_create("bybit", BrokerCredentials(api_key="k", api_secret="s"))

        assert connector.request_timeout == 4.0
        assert not container.shutdown.is_set()


class TestStartBrokers:
    @pytest.mark.asyncio
    async def test_connects_and_subscribes_enabled_brokers(self):
        container = build_container(make_settings(
            main=bybit_broker(),
            idle=bybit_broker(enabled=False),
            empty=bybit_broker(credentials=None),
        ))

        with patch.object(BybitConnector, "connect", new=AsyncMock()) as connect, \
                patch.object(BybitConnector, "subscribe_to_market_data", new=AsyncMock()) as subscribe:
            started = await start_brokers(container)

        assert started == ["main"]
        connect.assert_awaited_once()
        subscribe.assert_awaited_once_with(["BTCUSDT"])
        assert "main" in container.registry

    @pytest.mark.asyncio
    async def test_failing_broker_is_skipped(self):
        container = build_container(make_settings(main=bybit_broker()))

        with patch.object(BybitConnector, "connect", new=AsyncMock(side_effect=InvalidCredentialsError())):
            started = await start_brokers(container)

        assert started == []

    @pytest.mark.asyncio
    async def test_okx_without_passphrase_is_skipped(self):
        container = build_container(make_settings(hedge=bybit_broker(exchange="okx")))

        assert await start_brokers(container) == []
        assert len(container.registry) == 0


class TestRun:
    @pytest.mark.asyncio
    async def test_runs_until_shutdown_then_drains(self):
        container = build_container(make_settings(main=bybit_broker()))

        with patch.object(BybitConnector, "connect", new=AsyncMock()), \
                patch.object(BybitConnector, "subscribe_to_market_data", new=AsyncMock()), \
                patch.object(BybitConnector, "disconnect", new=AsyncMock()) as disconnect:
            task = asyncio.create_task(run(container))
            await asyncio.sleep(0.01)
            assert not task.done()

            connector = container.registry.get("main")
            connector.events.emit(MARKET_DATA, MarketData("BTCUSDT", 50000.0, 1.5, 100.0))

            container.shutdown.set()
            await asyncio.wait_for(task, timeout=1)

        disconnect.assert_awaited_once()
        assert len(container.registry) == 0
        assert container.registry.events.listener_count(MARKET_DATA) == 0

    @pytest.mark.asyncio
    async def test_returns_when_nothing_connects(self):
        container = build_container(make_settings())

        await asyncio.wait_for(run(container), timeout=1)

        assert not container.shutdown.is_set()


class TestSignals:
    @pytest.mark.asyncio
    async def test_signals_set_shutdown(self):
        container = build_container(make_settings())
        loop = asyncio.get_running_loop()

        with patch.object(loop, "add_signal_handler") as add_handler:
            app_module.install_signal_handlers(container)

        registered = {call.args[0]: call.args[1] for call in add_handler.call_args_list}
        assert set(registered) == {signal.SIGINT, signal.SIGTERM}
        registered[signal.SIGTERM]()
        assert container.shutdown.is_set()


class TestMain:
    def test_cli_dispatch(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        assert app_module.main(["brokers"]) == 0

    def test_invalid_config_exit_code(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = tmp_path / "config.yml"
        config.write_text("request_timeout: 0\n", encoding="utf-8")

        assert app_module.main(["run", "--config", str(config)]) == 2

    def test_run_mode_starts_runtime(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        served = []

        async def fake_serve(container):
            served.append(container)

        with patch.object(app_module, "_serve", new=fake_serve):
            assert app_module.main(["run", "--config", str(tmp_path / "missing.yml")]) == 0

        assert len(served) == 1
        assert served[0].settings.brokers == {}

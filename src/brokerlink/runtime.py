from __future__ import annotations

import logging

from .connectors.events import ERROR, MARKET_DATA
from .connectors.protocol import MarketData
from .di import AppContainer
from .errors import BrokerError

logger = logging.getLogger(__name__)


def _log_market_data(instance_id: str, data: MarketData) -> None:
    logger.info(
        "%s %s price=%s change_24h=%.2f%% volume_24h=%s",
        instance_id,
        data.symbol,
        data.price,
        data.change_24h,
        data.volume_24h,
    )


def _log_stream_error(instance_id: str, error: BrokerError) -> None:
    logger.warning("%s stream failed, market data stopped: %s", instance_id, error)


async def start_brokers(container: AppContainer) -> list[str]:
    """Connect every enabled broker and subscribe its symbols.

    A broker that fails to start is logged and skipped.

    Returns:
        Instance ids that connected successfully
    """
    registry = container.registry
    started: list[str] = []

    for instance_id, broker in container.settings.brokers.items():
        if not broker.enabled:
            logger.info("broker %s disabled, skipping", instance_id)
            continue

        credentials = broker.bound_credentials()
        if credentials is None:
            logger.error("broker %s has no credentials configured", instance_id)
            continue

        try:
            connector = await registry.connect(broker.exchange, credentials, instance_id)
            await connector.subscribe_to_market_data(broker.symbols)
        except (BrokerError, ValueError) as exc:
            logger.error("failed to start broker %s (%s): %s", instance_id, broker.exchange, exc)
            continue

        started.append(instance_id)

    return started


async def run(container: AppContainer) -> None:
    logger.info("runtime starting")
    logger.debug("settings=%s", container.settings.redacted())

    registry = container.registry
    detach = [
        registry.events.on(MARKET_DATA, _log_market_data),
        registry.events.on(ERROR, _log_stream_error),
    ]

    try:
        started = await start_brokers(container)
        if not started:
            logger.error("no broker connected")
            return

        logger.info("brokers running: %s", ", ".join(started))
        await container.shutdown.wait()
        logger.info("shutdown requested")
    finally:
        for remove in detach:
            remove()
        await registry.disconnect_all()
        logger.info("runtime stopped")

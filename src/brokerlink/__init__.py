"""brokerlink: unified broker integration for derivatives exchanges."""

from .connectors import ConnectorRegistry, ExchangeType, TradeOrder
from .errors import BrokerError
from .settings import BrokerCredentials, Settings

__all__ = [
    "BrokerCredentials",
    "BrokerError",
    "ConnectorRegistry",
    "ExchangeType",
    "Settings",
    "TradeOrder",
]

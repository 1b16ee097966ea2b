"""Error taxonomy shared by every broker connector."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

import aiohttp

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Classification of a broker failure."""

    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    UNSUPPORTED_EXCHANGE = "unsupported_exchange"
    GENERIC = "generic"


class BrokerError(Exception):
    """Base class for classified broker failures."""

    kind = ErrorKind.GENERIC
    default_message = "Unknown broker error"

    def __init__(self, message: str | None = None, *, status: int | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.status = status


class InvalidCredentialsError(BrokerError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid API credentials"


class RateLimitedError(BrokerError):
    kind = ErrorKind.RATE_LIMITED
    default_message = "Rate limit exceeded"


class ServiceUnavailableError(BrokerError):
    kind = ErrorKind.SERVICE_UNAVAILABLE
    default_message = "Broker service unavailable"


class ConnectionRefusedByBrokerError(BrokerError):
    kind = ErrorKind.CONNECTION_REFUSED
    default_message = "Connection refused by broker"


class RequestTimeoutError(BrokerError):
    kind = ErrorKind.TIMEOUT
    default_message = "Request timeout"


class UnsupportedExchangeError(BrokerError):
    kind = ErrorKind.UNSUPPORTED_EXCHANGE
    default_message = "Unsupported exchange"


def _is_connection_refused(cause: BaseException) -> bool:
    if isinstance(cause, ConnectionRefusedError):
        return True
    if isinstance(cause, aiohttp.ClientConnectorError):
        return isinstance(cause.os_error, ConnectionRefusedError)
    return False


def describe_cause(cause: BaseException) -> str:
    """Loggable summary of ``cause``.

    The repr of a ClientResponseError embeds the signed request headers,
    so only the status and the exchange's reply are kept.
    """
    if isinstance(cause, aiohttp.ClientResponseError):
        return f"{type(cause).__name__}: HTTP {cause.status} {cause.message}"
    return f"{type(cause).__name__}: {cause}"


def handle_error(cause: BaseException, context: str) -> BrokerError:
    """Classify a transport or protocol failure.

    The raw cause is always logged with ``context`` first. Callers are
    expected to ``raise handle_error(exc, ctx) from exc``.

    Args:
        cause: Exception raised by the HTTP/WebSocket layer
        context: Human-readable description of the failing operation

    Returns:
        A BrokerError subclass describing the failure
    """
    logger.error("Broker error in %s: %s", context, describe_cause(cause))

    if isinstance(cause, BrokerError):
        return cause

    status = getattr(cause, "status", None)
    if isinstance(status, int):
        if status == 401:
            return InvalidCredentialsError(status=status)
        if status == 429:
            return RateLimitedError(status=status)
        if status >= 500:
            return ServiceUnavailableError(status=status)

    if _is_connection_refused(cause):
        return ConnectionRefusedByBrokerError()

    if isinstance(cause, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)):
        return RequestTimeoutError()

    message = getattr(cause, "message", None) or str(cause)
    return BrokerError(message or None, status=status if isinstance(status, int) else None)

"""Base class for exchange connectors."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import aiohttp

from ..errors import BrokerError, InvalidCredentialsError, RateLimitedError, handle_error
from ..settings import BrokerCredentials
from .events import ERROR, MARKET_DATA, EventChannel
from .protocol import (
    AccountBalance,
    ExchangeType,
    MarketData,
    Position,
    TradeOrder,
    TradeResult,
)
from .rate_limit import FixedWindowRateLimiter
from .stream import DEFAULT_HEARTBEAT, MarketDataStream

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
USER_AGENT = "brokerlink/1.0"
RATE_WINDOW_MS = 60_000

# Per-endpoint admissions per RATE_WINDOW_MS.
ENDPOINT_LIMITS: dict[str, int] = {
    "validate": 10,
    "balance": 10,
    "positions": 10,
    "order": 20,
    "cancel": 20,
    "order_status": 10,
}

AUTH_FAILURE_STATUSES = {401, 403}


def hmac_sha256(secret: str, message: str) -> hmac.HMAC:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256)


class BaseConnector(ABC):
    """Shared REST, rate-limit and stream plumbing.

    Subclasses supply URLs, request signing, response normalization and
    the exchange's stream framing.
    """

    exchange_type: ExchangeType
    display_name: str = "Exchange"
    rest_url: str = ""
    sandbox_rest_url: str | None = None
    ws_url: str = ""
    sandbox_ws_url: str | None = None
    keepalive_payload: str | dict[str, Any] | None = None
    keepalive_interval: float | None = None

    def __init__(
        self,
        credentials: BrokerCredentials,
        *,
        request_timeout: float = DEFAULT_TIMEOUT,
        rate_limiter: FixedWindowRateLimiter | None = None,
        heartbeat: float | None = DEFAULT_HEARTBEAT,
    ):
        self.credentials = credentials
        self.request_timeout = request_timeout
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter()
        self.heartbeat = heartbeat
        self.events = EventChannel(self.display_name)
        self.session: aiohttp.ClientSession | None = None
        self._stream: MarketDataStream | None = None
        self._stream_opening: asyncio.Future | None = None
        self._connected = False

    @property
    def api_key(self) -> str:
        return self.credentials.api_key.get_secret_value()

    @property
    def api_secret(self) -> str:
        return self.credentials.api_secret.get_secret_value()

    @property
    def passphrase(self) -> str:
        if self.credentials.passphrase is None:
            return ""
        return self.credentials.passphrase.get_secret_value()

    @property
    def sandbox(self) -> bool:
        return self.credentials.sandbox

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stream(self) -> MarketDataStream | None:
        return self._stream

    def get_base_url(self) -> str:
        if self.sandbox and self.sandbox_rest_url:
            return self.sandbox_rest_url
        return self.rest_url

    def get_ws_url(self) -> str:
        if self.sandbox and self.sandbox_ws_url:
            return self.sandbox_ws_url
        return self.ws_url

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(connector=aiohttp.TCPConnector())
        return self.session

    def _admit(self, endpoint: str) -> None:
        """Fail fast, before any network I/O, when ``endpoint`` is over its limit."""
        if not self.rate_limiter.check(endpoint, ENDPOINT_LIMITS[endpoint], RATE_WINDOW_MS):
            raise RateLimitedError(f"Rate limit exceeded for {endpoint}")

    def _timestamp_ms(self) -> int:
        return int(time.time() * 1000)

    @abstractmethod
    def _auth_headers(self, method: str, path: str, query: str, body: str) -> dict[str, str]:
        """Authentication headers for one request."""
        ...

    def _prepare_request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        body: dict[str, Any] | None,
    ) -> tuple[str, dict[str, str], str | None]:
        """Build ``(url, headers, payload)``; the signed strings are the ones sent."""
        query = urlencode(params) if params else ""
        payload = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        headers.update(self._auth_headers(method, path, query, payload))

        url = f"{self.get_base_url()}{path}"
        if query:
            url = f"{url}?{query}"
        return url, headers, payload or None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        context: str,
    ) -> Any:
        """Issue one signed call and decode its JSON body.

        Raises:
            BrokerError: Classified transport or HTTP failure
        """
        url, headers, payload = self._prepare_request(method, path, params, body)
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with session.request(
                method, url, data=payload, headers=headers, timeout=timeout
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise aiohttp.ClientResponseError(
                        resp.request_info,
                        resp.history,
                        status=resp.status,
                        message=text,
                    )
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            raise handle_error(exc, f"{self.display_name} {context}") from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        try:
            if not await self.validate_credentials():
                raise InvalidCredentialsError()
            await self._ensure_stream()
        except (BrokerError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            self._connected = False
            try:
                await self._close_stream()
            finally:
                await self._close_session()
            raise handle_error(exc, f"{self.display_name} connection") from exc

        self._connected = True
        logger.info("Connected to %s", self.display_name)

    async def disconnect(self) -> None:
        self._connected = False
        try:
            await self._close_stream()
        finally:
            await self._close_session()
        logger.info("Disconnected from %s", self.display_name)

    async def _close_session(self) -> None:
        session = self.session
        self.session = None
        if session is not None:
            await session.close()

    async def validate_credentials(self) -> bool:
        self._admit("validate")
        try:
            return await self._probe_credentials()
        except BrokerError as exc:
            if self._is_auth_failure(exc):
                logger.error("%s credential validation failed: %s", self.display_name, exc)
                return False
            raise

    def _is_auth_failure(self, exc: BrokerError) -> bool:
        return isinstance(exc, InvalidCredentialsError) or exc.status in AUTH_FAILURE_STATUSES

    async def health_check(self) -> bool:
        try:
            return await self.validate_credentials()
        except BrokerError as exc:
            logger.error("%s health check failed: %s", self.display_name, exc)
            return False

    @abstractmethod
    async def _probe_credentials(self) -> bool:
        """Single low-cost authenticated call; True when the account is usable."""
        ...

    # ------------------------------------------------------------------
    # Unified trading operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_account_balance(self) -> list[AccountBalance]:
        ...

    @abstractmethod
    async def get_positions(self) -> list[Position]:
        ...

    @abstractmethod
    async def place_order(self, order: TradeOrder) -> TradeResult:
        ...

    @abstractmethod
    async def cancel_order(self, order_id: str, symbol: str) -> bool:
        ...

    @abstractmethod
    async def get_order_status(self, order_id: str, symbol: str) -> TradeResult:
        ...

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def subscribe_to_market_data(self, symbols: list[str]) -> None:
        if not symbols:
            return
        stream = await self._ensure_stream()
        await self._send_frames(stream, await self._subscribe_frames(symbols), "subscribe")
        logger.info("%s subscribed to market data for: %s", self.display_name, ", ".join(symbols))

    async def unsubscribe_from_market_data(self, symbols: list[str]) -> None:
        stream = self._stream
        if stream is None or not stream.is_open or not symbols:
            return
        await self._send_frames(stream, await self._unsubscribe_frames(symbols), "unsubscribe")
        logger.info("%s unsubscribed from market data for: %s", self.display_name, ", ".join(symbols))

    async def _send_frames(
        self, stream: MarketDataStream, frames: list[dict[str, Any]], context: str
    ) -> None:
        try:
            for frame in frames:
                await stream.send_json(frame)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise handle_error(exc, f"{self.display_name} {context}") from exc

    @abstractmethod
    async def _subscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def _unsubscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def _parse_ticker(self, message: Any) -> MarketData | None:
        """MarketData for a ticker-shaped message, None for anything else."""
        ...

    def _handle_stream_message(self, message: Any) -> None:
        try:
            data = self._parse_ticker(message)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("%s: malformed ticker message: %s", self.display_name, exc)
            return
        if data is not None:
            self.events.emit(MARKET_DATA, data)

    def _handle_stream_error(self, exc: BaseException) -> None:
        self.events.emit(ERROR, handle_error(exc, f"{self.display_name} WebSocket"))

    def _handle_stream_closed(self, stream: MarketDataStream) -> None:
        if self._stream is stream:
            self._stream = None

    async def _ensure_stream(self) -> MarketDataStream:
        """Current open stream, opening one if needed.

        Concurrent callers share a single in-flight handshake.
        """
        if self._stream is not None and self._stream.is_open:
            return self._stream

        opening = self._stream_opening
        if opening is None:
            opening = asyncio.ensure_future(self._open_stream())
            self._stream_opening = opening
            opening.add_done_callback(self._clear_stream_opening)
        return await asyncio.shield(opening)

    def _clear_stream_opening(self, future: asyncio.Future) -> None:
        if self._stream_opening is future:
            self._stream_opening = None

    async def _open_stream(self) -> MarketDataStream:
        session = await self._ensure_session()
        stream = MarketDataStream(
            self.get_ws_url(),
            session,
            name=self.display_name,
            on_message=self._handle_stream_message,
            on_error=self._handle_stream_error,
            on_close=self._handle_stream_closed,
            heartbeat=self.heartbeat,
            keepalive_payload=self.keepalive_payload,
            keepalive_interval=self.keepalive_interval,
            open_timeout=self.request_timeout,
        )
        try:
            await stream.open()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise handle_error(exc, f"{self.display_name} WebSocket") from exc
        self._stream = stream
        return stream

    async def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            await stream.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} sandbox={self.sandbox} connected={self._connected}>"

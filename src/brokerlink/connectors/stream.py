"""Market-data WebSocket stream shared by the connectors."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT = 20.0
DEFAULT_OPEN_TIMEOUT = 10.0


class MarketDataStream:
    """One outbound WebSocket connection owned by one connector.

    Inbound text frames are decoded as JSON and handed to ``on_message``.
    A transport error is reported through ``on_error``; on error or close
    the stream calls ``on_close`` once and never reconnects by itself.
    """

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession,
        *,
        name: str,
        on_message: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
        on_close: Callable[["MarketDataStream"], None],
        heartbeat: float | None = DEFAULT_HEARTBEAT,
        keepalive_payload: str | dict[str, Any] | None = None,
        keepalive_interval: float | None = None,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
    ):
        self.url = url
        self.name = name
        self.heartbeat = heartbeat
        self.open_timeout = open_timeout
        self.keepalive_payload = keepalive_payload
        self.keepalive_interval = keepalive_interval
        self._session = session
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._keepalive: asyncio.Task | None = None
        self._close_reported = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self) -> None:
        """Perform the WebSocket handshake and start the reader task."""
        # ClientWSTimeout covers close only; the handshake is bounded here
        self._ws = await asyncio.wait_for(
            self._session.ws_connect(
                self.url,
                heartbeat=self.heartbeat,
                timeout=aiohttp.ClientWSTimeout(ws_close=self.open_timeout),
            ),
            timeout=self.open_timeout,
        )
        logger.info("%s WebSocket connected", self.name)

        self._reader = asyncio.create_task(self._receive_loop())
        if self.keepalive_payload is not None and self.keepalive_interval:
            self._keepalive = asyncio.create_task(self._keepalive_loop())

    async def send_json(self, payload: dict[str, Any]) -> None:
        if not self.is_open:
            raise ConnectionError(f"{self.name} WebSocket is not open")
        await self._ws.send_str(json.dumps(payload))

    async def close(self) -> None:
        """Stop background tasks and close the socket. Idempotent."""
        ws = self._ws
        for task in (self._keepalive, self._reader):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._keepalive = None
        self._reader = None

        if ws is not None and not ws.closed:
            await ws.close()
        self._mark_closed()

    async def _receive_loop(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._on_error(ws.exception() or ConnectionError(f"{self.name} WebSocket error"))
                    break
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError) as exc:
            logger.error("%s WebSocket error: %s", self.name, exc)
            self._on_error(exc)
        finally:
            if self._keepalive is not None and not self._keepalive.done():
                self._keepalive.cancel()
            self._mark_closed()

    def _dispatch(self, raw: str) -> None:
        if raw == "pong":
            return
        try:
            message = json.loads(raw)
        except ValueError:
            logger.error("%s: error parsing WebSocket message: %.200s", self.name, raw)
            return
        try:
            self._on_message(message)
        except Exception as exc:
            logger.exception("%s: failed to handle WebSocket message", self.name)
            self._on_error(exc)

    async def _keepalive_loop(self) -> None:
        while self.is_open:
            await asyncio.sleep(self.keepalive_interval)
            if not self.is_open:
                break
            try:
                if isinstance(self.keepalive_payload, str):
                    await self._ws.send_str(self.keepalive_payload)
                else:
                    await self._ws.send_str(json.dumps(self.keepalive_payload))
            except (aiohttp.ClientError, ConnectionError) as exc:
                logger.warning("%s keepalive failed: %s", self.name, exc)
                break

    def _mark_closed(self) -> None:
        self._ws = None
        if self._close_reported:
            return
        self._close_reported = True
        logger.info("%s WebSocket disconnected", self.name)
        self._on_close(self)

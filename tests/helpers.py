"""Mocks shared by the connector tests."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiohttp


def create_async_response(status=200, json_data=None, text=""):
    """Create a mock async response usable as ``async with session.request(...)``."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data if json_data is not None else {})
    resp.text = AsyncMock(return_value=text or json.dumps(json_data or {}))
    resp.request_info = MagicMock()
    resp.history = ()
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=None)
    return resp


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self):
        self.closed = False
        self.sent = []
        self.error = None
        self._inbox = asyncio.Queue()

    def feed(self, payload):
        data = payload if isinstance(payload, str) else json.dumps(payload)
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def fail(self, exc):
        self.error = exc
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None))

    def exception(self):
        return self.error

    async def send_str(self, data):
        self.sent.append(data if data == "ping" else json.loads(data))

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


async def settle():
    """Let background reader tasks process queued frames."""
    for _ in range(5):
        await asyncio.sleep(0)


def sent_request(session, index=-1):
    """``(method, url, data, headers)`` of one call made on a mock session."""
    call = session.request.call_args_list[index]
    method, url = call.args
    return method, url, call.kwargs["data"], call.kwargs["headers"]

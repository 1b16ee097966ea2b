"""OKX v5 connector."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Any

from ..errors import BrokerError
from .base import BaseConnector, hmac_sha256
from .normalization import (
    OKX_STATUS,
    first_float,
    format_decimal,
    map_order_status,
    percentage_of,
    side_from_size,
    split_balance,
    to_float,
)
from .protocol import (
    AccountBalance,
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
    from_millis,
)

logger = logging.getLogger(__name__)


class OKXConnector(BaseConnector):
    """OKX v5 connector (cross margin)."""

    exchange_type = ExchangeType.OKX
    display_name = "OKX"
    rest_url = "https://www.okx.com"
    ws_url = "wss://ws.okx.com:8443/ws/v5/public"
    sandbox_ws_url = "wss://wspap.okx.com:8443/ws/v5/public"
    keepalive_payload = "ping"
    keepalive_interval = 25.0

    def __init__(self, credentials, *, td_mode: str = "cross", **options: Any):
        if credentials.passphrase is None:
            raise ValueError("OKX requires passphrase parameter")
        super().__init__(credentials, **options)
        self.td_mode = td_mode

    def _timestamp(self) -> str:
        now = datetime.now(timezone.utc)
        return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _auth_headers(self, method: str, path: str, query: str, body: str) -> dict[str, str]:
        timestamp = self._timestamp()
        request_path = f"{path}?{query}" if query else path
        message = timestamp + method.upper() + request_path + body
        signature = base64.b64encode(hmac_sha256(self.api_secret, message).digest()).decode()
        headers = {
            "OK-ACCESS-KEY": self.api_key,
            "OK-ACCESS-SIGN": signature,
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self.passphrase,
        }
        if self.sandbox:
            headers["x-simulated-trading"] = "1"
        return headers

    @staticmethod
    def _data(response: dict[str, Any], failure: str) -> list[dict[str, Any]]:
        rows = response.get("data") or []
        if response.get("code") != "0":
            detail = rows[0].get("sMsg") if rows and isinstance(rows[0], dict) else None
            raise BrokerError(detail or response.get("msg") or failure)
        return rows

    async def _probe_credentials(self) -> bool:
        data = await self._request("GET", "/api/v5/account/config", context="validate credentials")
        return data.get("code") == "0"

    async def get_account_balance(self) -> list[AccountBalance]:
        self._admit("balance")
        data = await self._request("GET", "/api/v5/account/balance", context="get balance")

        balances = []
        for account in self._data(data, "Failed to fetch balance"):
            for detail in account.get("details", []):
                total = first_float(detail.get("cashBal"), detail.get("eq"), detail.get("bal"))
                if total <= 0:
                    continue
                free, locked = split_balance(total, to_float(detail.get("availBal")))
                balances.append(AccountBalance(detail["ccy"], free, locked))
        return balances

    async def get_positions(self) -> list[Position]:
        self._admit("positions")
        data = await self._request("GET", "/api/v5/account/positions", context="get positions")

        positions = []
        for row in self._data(data, "Failed to fetch positions"):
            size = to_float(row.get("pos"))
            if size == 0:
                continue
            pos_side = row.get("posSide")
            if pos_side in ("long", "short"):
                side = PositionSide(pos_side)
            else:
                side = side_from_size(size)
            positions.append(
                Position(
                    symbol=row["instId"],
                    side=side,
                    size=abs(size),
                    entry_price=to_float(row.get("avgPx")),
                    mark_price=to_float(row.get("markPx")),
                    pnl=to_float(row.get("upl")),
                    percentage=to_float(row.get("uplRatio")) * 100,
                )
            )
        return positions

    @staticmethod
    def _order_type(order: TradeOrder) -> str:
        if order.type is OrderType.MARKET:
            return "market"
        if order.time_in_force is TimeInForce.IOC:
            return "ioc"
        if order.time_in_force is TimeInForce.FOK:
            return "fok"
        return "limit"

    async def place_order(self, order: TradeOrder) -> TradeResult:
        self._admit("order")
        body: dict[str, Any] = {
            "instId": order.symbol,
            "tdMode": self.td_mode,
            "side": order.side.value,
            "ordType": self._order_type(order),
            "sz": format_decimal(order.quantity),
        }
        if order.price is not None:
            body["px"] = format_decimal(order.price)
        if order.stop_price is not None:
            body["slTriggerPx"] = format_decimal(order.stop_price)
            body["slOrdPx"] = "-1"

        data = await self._request("POST", "/api/v5/trade/order", body=body, context="place order")
        rows = self._data(data, "Order placement failed")
        if not rows:
            raise BrokerError("Order placement failed")
        result = rows[0]

        # The acknowledgment carries no fill or fee data; see get_order_status.
        return TradeResult(
            order_id=result["ordId"],
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=order.price or 0.0,
            status=OrderStatus.PENDING if result.get("sCode", "0") == "0" else OrderStatus.REJECTED,
            timestamp=from_millis(result.get("ts")),
            fees=None,
        )

    async def cancel_order(self, order_id: str, symbol: str) -> bool:
        self._admit("cancel")
        data = await self._request(
            "POST",
            "/api/v5/trade/cancel-order",
            body={"instId": symbol, "ordId": order_id},
            context="cancel order",
        )
        return data.get("code") == "0"

    async def get_order_status(self, order_id: str, symbol: str) -> TradeResult:
        self._admit("order_status")
        data = await self._request(
            "GET",
            "/api/v5/trade/order",
            params={"instId": symbol, "ordId": order_id},
            context="get order status",
        )
        rows = self._data(data, "Failed to fetch order status")
        if not rows:
            raise BrokerError(f"Order not found: {order_id}")

        row = rows[0]
        return TradeResult(
            order_id=row["ordId"],
            symbol=row["instId"],
            side=OrderSide(row["side"]),
            quantity=to_float(row.get("sz")),
            price=first_float(row.get("px"), row.get("avgPx")),
            status=map_order_status(row.get("state"), OKX_STATUS),
            timestamp=from_millis(row.get("uTime")),
            # OKX reports charged fees as negative amounts
            fees=abs(to_float(row.get("fee"))),
        )

    @staticmethod
    def _ticker_frame(op: str, symbols: list[str]) -> dict[str, Any]:
        return {"op": op, "args": [{"channel": "tickers", "instId": symbol} for symbol in symbols]}

    async def _subscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return [self._ticker_frame("subscribe", symbols)]

    async def _unsubscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return [self._ticker_frame("unsubscribe", symbols)]

    def _parse_ticker(self, message: Any) -> MarketData | None:
        if not isinstance(message, dict):
            return None
        arg = message.get("arg") or {}
        data = message.get("data")
        if arg.get("channel") != "tickers" or not data:
            return None

        ticker = data[0]
        last = to_float(ticker.get("last"))
        open_24h = to_float(ticker.get("open24h"))
        return MarketData(
            symbol=ticker["instId"],
            price=last,
            change_24h=percentage_of(last - open_24h, open_24h),
            volume_24h=to_float(ticker.get("vol24h")),
            timestamp=from_millis(ticker.get("ts")),
        )

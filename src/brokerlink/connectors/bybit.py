"""Bybit v5 (USDT linear perpetual) connector."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import BrokerError
from .base import BaseConnector, hmac_sha256
from .normalization import (
    BYBIT_STATUS,
    first_float,
    format_decimal,
    map_order_status,
    percentage_of,
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
    TradeOrder,
    TradeResult,
    from_millis,
    utcnow,
)

logger = logging.getLogger(__name__)

CATEGORY = "linear"


class BybitConnector(BaseConnector):
    """Bybit unified-account connector for linear contracts."""

    exchange_type = ExchangeType.BYBIT
    display_name = "Bybit"
    rest_url = "https://api.bybit.com"
    sandbox_rest_url = "https://api-testnet.bybit.com"
    ws_url = "wss://stream.bybit.com/v5/public/linear"
    sandbox_ws_url = "wss://stream-testnet.bybit.com/v5/public/linear"
    keepalive_payload = {"op": "ping"}
    keepalive_interval = 20.0

    def __init__(
        self,
        credentials,
        *,
        recv_window_ms: int = 5000,
        settle_coin: str = "USDT",
        **options: Any,
    ):
        super().__init__(credentials, **options)
        self.recv_window_ms = recv_window_ms
        self.settle_coin = settle_coin

    def _auth_headers(self, method: str, path: str, query: str, body: str) -> dict[str, str]:
        timestamp = str(self._timestamp_ms())
        recv_window = str(self.recv_window_ms)
        params = query if method.upper() == "GET" else body
        message = timestamp + self.api_key + recv_window + params
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": recv_window,
            "X-BAPI-SIGN": hmac_sha256(self.api_secret, message).hexdigest(),
        }

    @staticmethod
    def _result(data: dict[str, Any], failure: str) -> dict[str, Any]:
        if data.get("retCode") != 0:
            raise BrokerError(data.get("retMsg") or failure)
        return data.get("result") or {}

    async def _probe_credentials(self) -> bool:
        data = await self._request("GET", "/v5/account/info", context="validate credentials")
        return data.get("retCode") == 0

    async def get_account_balance(self) -> list[AccountBalance]:
        self._admit("balance")
        data = await self._request(
            "GET",
            "/v5/account/wallet-balance",
            params={"accountType": "UNIFIED"},
            context="get balance",
        )
        result = self._result(data, "Failed to fetch balance")

        balances = []
        for account in result.get("list", []):
            for coin in account.get("coin", []):
                total = to_float(coin.get("walletBalance"))
                if total <= 0:
                    continue
                available = to_float(
                    coin.get("availableToWithdraw"),
                    default=total - to_float(coin.get("locked")),
                )
                free, locked = split_balance(total, available)
                balances.append(AccountBalance(coin["coin"], free, locked))
        return balances

    async def get_positions(self) -> list[Position]:
        self._admit("positions")
        data = await self._request(
            "GET",
            "/v5/position/list",
            params={"category": CATEGORY, "settleCoin": self.settle_coin},
            context="get positions",
        )
        result = self._result(data, "Failed to fetch positions")

        positions = []
        for row in result.get("list", []):
            size = to_float(row.get("size"))
            if size == 0:
                continue
            pnl = to_float(row.get("unrealisedPnl"))
            positions.append(
                Position(
                    symbol=row["symbol"],
                    side=PositionSide.LONG if row.get("side") == "Buy" else PositionSide.SHORT,
                    size=abs(size),
                    entry_price=to_float(row.get("avgPrice")),
                    mark_price=to_float(row.get("markPrice")),
                    pnl=pnl,
                    # positionValue is 0 for freshly opened or hedged rows
                    percentage=percentage_of(pnl, to_float(row.get("positionValue"))),
                )
            )
        return positions

    async def place_order(self, order: TradeOrder) -> TradeResult:
        self._admit("order")
        body: dict[str, Any] = {
            "category": CATEGORY,
            "symbol": order.symbol,
            "side": "Buy" if order.side is OrderSide.BUY else "Sell",
            "orderType": "Limit" if order.type is OrderType.LIMIT else "Market",
            "qty": format_decimal(order.quantity),
            "timeInForce": order.time_in_force.value,
        }
        if order.price is not None:
            body["price"] = format_decimal(order.price)
        if order.stop_price is not None:
            body["stopLoss"] = format_decimal(order.stop_price)

        data = await self._request("POST", "/v5/order/create", body=body, context="place order")
        result = self._result(data, "Order placement failed")

        # The acknowledgment only carries ids; the order is live until queried.
        return TradeResult(
            order_id=result["orderId"],
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=order.price or 0.0,
            status=OrderStatus.PENDING,
            timestamp=utcnow(),
            fees=None,
        )

    async def cancel_order(self, order_id: str, symbol: str) -> bool:
        self._admit("cancel")
        data = await self._request(
            "POST",
            "/v5/order/cancel",
            body={"category": CATEGORY, "symbol": symbol, "orderId": order_id},
            context="cancel order",
        )
        return data.get("retCode") == 0

    async def get_order_status(self, order_id: str, symbol: str) -> TradeResult:
        self._admit("order_status")
        data = await self._request(
            "GET",
            "/v5/order/realtime",
            params={"category": CATEGORY, "symbol": symbol, "orderId": order_id},
            context="get order status",
        )
        rows = self._result(data, "Failed to fetch order status").get("list", [])
        if not rows:
            raise BrokerError(f"Order not found: {order_id}")

        row = rows[0]
        return TradeResult(
            order_id=row["orderId"],
            symbol=row["symbol"],
            side=OrderSide(row["side"].lower()),
            quantity=to_float(row.get("qty")),
            price=first_float(row.get("price"), row.get("avgPrice")),
            status=map_order_status(row.get("orderStatus"), BYBIT_STATUS),
            timestamp=from_millis(row.get("updatedTime")),
            fees=to_float(row.get("cumExecFee")),
        )

    async def _subscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return [{"op": "subscribe", "args": [f"tickers.{symbol}" for symbol in symbols]}]

    async def _unsubscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return [{"op": "unsubscribe", "args": [f"tickers.{symbol}" for symbol in symbols]}]

    def _parse_ticker(self, message: Any) -> MarketData | None:
        if not isinstance(message, dict):
            return None
        topic = message.get("topic") or ""
        data = message.get("data")
        # Incremental frames without lastPrice carry no price update.
        if not topic.startswith("tickers.") or not isinstance(data, dict) or not data.get("lastPrice"):
            return None
        return MarketData(
            symbol=data.get("symbol") or topic.split(".", 1)[1],
            price=to_float(data["lastPrice"]),
            change_24h=to_float(data.get("price24hPcnt")) * 100,
            volume_24h=to_float(data.get("volume24h")),
            timestamp=from_millis(message.get("ts")),
        )

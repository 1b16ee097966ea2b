"""Delta Exchange connector."""

from __future__ import annotations

import logging
import time
from typing import Any

from ..errors import BrokerError
from .base import BaseConnector, hmac_sha256
from .normalization import (
    DELTA_STATUS,
    first_float,
    format_decimal,
    map_order_status,
    parse_timestamp,
    side_from_size,
    split_balance,
    to_float,
)
from .protocol import (
    AccountBalance,
    ExchangeType,
    MarketData,
    OrderSide,
    OrderType,
    Position,
    TradeOrder,
    TradeResult,
)

logger = logging.getLogger(__name__)


class DeltaExchangeConnector(BaseConnector):
    """Delta Exchange v2 connector.

    Orders and ticker subscriptions address products by numeric id; the
    symbol -> id table is fetched once and cached per connector.
    """

    exchange_type = ExchangeType.DELTA
    display_name = "Delta Exchange"
    rest_url = "https://api.delta.exchange"
    sandbox_rest_url = "https://testnet-api.delta.exchange"
    ws_url = "wss://socket.delta.exchange"
    sandbox_ws_url = "wss://testnet-socket.delta.exchange"

    def __init__(self, credentials, **options: Any):
        super().__init__(credentials, **options)
        self._product_ids: dict[str, int] = {}

    def _timestamp(self) -> str:
        return str(int(time.time()))

    def _auth_headers(self, method: str, path: str, query: str, body: str) -> dict[str, str]:
        timestamp = self._timestamp()
        query_string = f"?{query}" if query else ""
        message = method.upper() + timestamp + path + query_string + body
        return {
            "api-key": self.api_key,
            "timestamp": timestamp,
            "signature": hmac_sha256(self.api_secret, message).hexdigest(),
        }

    @staticmethod
    def _result(data: dict[str, Any], failure: str) -> Any:
        if not data.get("success"):
            error = data.get("error") or {}
            message = error.get("message") or error.get("code") if isinstance(error, dict) else error
            raise BrokerError(message or failure)
        return data.get("result")

    async def _probe_credentials(self) -> bool:
        data = await self._request("GET", "/v2/profile", context="validate credentials")
        return bool(data.get("success"))

    async def get_account_balance(self) -> list[AccountBalance]:
        self._admit("balance")
        data = await self._request("GET", "/v2/wallet/balances", context="get balance")
        rows = self._result(data, "Failed to fetch balance") or []

        balances = []
        for row in rows:
            total = first_float(row.get("balance"), row.get("wallet_balance"))
            if total <= 0:
                continue
            free, locked = split_balance(total, to_float(row.get("available_balance")))
            balances.append(AccountBalance(row["asset_symbol"], free, locked))
        return balances

    async def get_positions(self) -> list[Position]:
        self._admit("positions")
        data = await self._request("GET", "/v2/positions/margined", context="get positions")
        rows = self._result(data, "Failed to fetch positions") or []

        positions = []
        for row in rows:
            size = to_float(row.get("size"))
            if size == 0:
                continue
            positions.append(
                Position(
                    symbol=row.get("product_symbol", ""),
                    side=side_from_size(size),
                    size=abs(size),
                    entry_price=to_float(row.get("entry_price")),
                    mark_price=to_float(row.get("mark_price")),
                    pnl=to_float(row.get("unrealized_pnl")),
                    percentage=to_float(row.get("unrealized_pnl_percent")),
                )
            )
        return positions

    async def place_order(self, order: TradeOrder) -> TradeResult:
        self._admit("order")
        body: dict[str, Any] = {
            "product_id": await self._get_product_id(order.symbol),
            "side": order.side.value,
            "order_type": "limit_order" if order.type is OrderType.LIMIT else "market_order",
            "size": format_decimal(order.quantity),
            "time_in_force": order.time_in_force.value.lower(),
        }
        if order.price is not None:
            body["limit_price"] = format_decimal(order.price)
        if order.stop_price is not None:
            body["stop_price"] = format_decimal(order.stop_price)

        data = await self._request("POST", "/v2/orders", body=body, context="place order")
        result = self._result(data, "Order placement failed")
        return self._to_trade_result(result, order.symbol, order.side)

    async def cancel_order(self, order_id: str, symbol: str) -> bool:
        self._admit("cancel")
        body = {"id": int(order_id), "product_id": await self._get_product_id(symbol)}
        data = await self._request("DELETE", "/v2/orders", body=body, context="cancel order")
        return bool(data.get("success"))

    async def get_order_status(self, order_id: str, symbol: str) -> TradeResult:
        self._admit("order_status")
        data = await self._request("GET", f"/v2/orders/{order_id}", context="get order status")
        result = self._result(data, "Failed to fetch order status")
        return self._to_trade_result(result, symbol, None)

    def _to_trade_result(
        self, result: dict[str, Any], symbol: str, side: OrderSide | None
    ) -> TradeResult:
        return TradeResult(
            order_id=str(result["id"]),
            symbol=symbol,
            side=side or OrderSide(result["side"]),
            quantity=to_float(result.get("size")),
            price=first_float(result.get("limit_price"), result.get("average_fill_price")),
            status=map_order_status(result.get("state"), DELTA_STATUS, case_insensitive=True),
            timestamp=parse_timestamp(result.get("created_at")),
            fees=first_float(result.get("paid_commission"), result.get("commission")),
        )

    async def _get_product_id(self, symbol: str) -> int:
        if symbol not in self._product_ids:
            data = await self._request("GET", "/v2/products", context="get product id")
            for product in self._result(data, "Failed to fetch products") or []:
                self._product_ids[product["symbol"]] = int(product["id"])
        try:
            return self._product_ids[symbol]
        except KeyError:
            raise BrokerError(f"Product not found for symbol: {symbol}") from None

    async def _ticker_frame(self, op: str, symbols: list[str]) -> list[dict[str, Any]]:
        return [
            {
                "type": op,
                "payload": {
                    "channels": [
                        {"name": "ticker", "symbols": [str(await self._get_product_id(symbol))]}
                    ]
                },
            }
            for symbol in symbols
        ]

    async def _subscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return await self._ticker_frame("subscribe", symbols)

    async def _unsubscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return await self._ticker_frame("unsubscribe", symbols)

    def _parse_ticker(self, message: Any) -> MarketData | None:
        if not isinstance(message, dict):
            return None
        if message.get("type") != "ticker" or not message.get("symbol"):
            return None
        return MarketData(
            symbol=message["symbol"],
            price=to_float(message.get("close")),
            change_24h=to_float(message.get("change_24h")),
            volume_24h=to_float(message.get("volume")),
            timestamp=parse_timestamp(message.get("timestamp")),
        )

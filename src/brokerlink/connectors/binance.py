"""Binance USD-M Futures connector."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from ..errors import BrokerError
from .base import USER_AGENT, BaseConnector, hmac_sha256
from .normalization import (
    BINANCE_STATUS,
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
    OrderType,
    Position,
    TradeOrder,
    TradeResult,
    from_millis,
)

logger = logging.getLogger(__name__)

# -2014 bad API key format, -2015 invalid key/IP/permissions, -1022 bad signature
AUTH_ERROR_CODES = ("-2014", "-2015", "-1022")


class BinanceFuturesConnector(BaseConnector):
    """Binance USD-M Futures connector."""

    exchange_type = ExchangeType.BINANCE
    display_name = "Binance Futures"
    rest_url = "https://fapi.binance.com"
    sandbox_rest_url = "https://testnet.binancefuture.com"
    ws_url = "wss://fstream.binance.com/ws"
    sandbox_ws_url = "wss://stream.binancefuture.com/ws"

    def __init__(self, credentials, *, recv_window_ms: int = 5000, **options: Any):
        super().__init__(credentials, **options)
        self.recv_window_ms = recv_window_ms

    def _auth_headers(self, method: str, path: str, query: str, body: str) -> dict[str, str]:
        return {"X-MBX-APIKEY": self.api_key}

    def _prepare_request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        body: dict[str, Any] | None,
    ) -> tuple[str, dict[str, str], str | None]:
        """Sign the full query string (including timestamp) and append the signature."""
        params = dict(params or {})
        if body:
            params.update(body)
        params["timestamp"] = self._timestamp_ms()
        params["recvWindow"] = self.recv_window_ms

        query = urlencode(params)
        signature = hmac_sha256(self.api_secret, query).hexdigest()
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": USER_AGENT,
        }
        headers.update(self._auth_headers(method, path, query, ""))
        return f"{self.get_base_url()}{path}?{query}&signature={signature}", headers, None

    def _is_auth_failure(self, exc: BrokerError) -> bool:
        if super()._is_auth_failure(exc):
            return True
        return any(f'"code":{code}' in exc.message.replace(" ", "") for code in AUTH_ERROR_CODES)

    async def _probe_credentials(self) -> bool:
        data = await self._request("GET", "/fapi/v2/account", context="validate credentials")
        return bool(data.get("canTrade"))

    async def get_account_balance(self) -> list[AccountBalance]:
        self._admit("balance")
        rows = await self._request("GET", "/fapi/v2/balance", context="get balance")

        balances = []
        for row in rows:
            total = to_float(row.get("balance"))
            if total <= 0:
                continue
            free, locked = split_balance(total, to_float(row.get("availableBalance")))
            balances.append(AccountBalance(row["asset"], free, locked))
        return balances

    async def get_positions(self) -> list[Position]:
        self._admit("positions")
        rows = await self._request("GET", "/fapi/v2/positionRisk", context="get positions")

        positions = []
        for row in rows:
            amount = to_float(row.get("positionAmt"))
            if amount == 0:
                continue
            entry_price = to_float(row.get("entryPrice"))
            pnl = to_float(row.get("unRealizedProfit"))
            positions.append(
                Position(
                    symbol=row["symbol"],
                    side=side_from_size(amount),
                    size=abs(amount),
                    entry_price=entry_price,
                    mark_price=to_float(row.get("markPrice")),
                    pnl=pnl,
                    percentage=percentage_of(pnl, abs(amount) * entry_price),
                )
            )
        return positions

    @staticmethod
    def _order_type(order: TradeOrder) -> str:
        if order.stop_price is not None:
            return "STOP" if order.type is OrderType.LIMIT else "STOP_MARKET"
        return order.type.value.upper()

    async def place_order(self, order: TradeOrder) -> TradeResult:
        self._admit("order")
        params: dict[str, Any] = {
            "symbol": order.symbol,
            "side": order.side.value.upper(),
            "type": self._order_type(order),
            "quantity": format_decimal(order.quantity),
        }
        if order.type is OrderType.LIMIT:
            params["timeInForce"] = order.time_in_force.value
            # MARKET and STOP_MARKET reject a price (-1106)
            if order.price is not None:
                params["price"] = format_decimal(order.price)
        if order.stop_price is not None:
            params["stopPrice"] = format_decimal(order.stop_price)

        data = await self._request("POST", "/fapi/v1/order", params=params, context="place order")
        # The acknowledgment carries no commission; see get_order_status.
        return self._to_trade_result(data, fees=None)

    async def cancel_order(self, order_id: str, symbol: str) -> bool:
        self._admit("cancel")
        data = await self._request(
            "DELETE",
            "/fapi/v1/order",
            params={"symbol": symbol, "orderId": order_id},
            context="cancel order",
        )
        return data.get("status") == "CANCELED"

    async def get_order_status(self, order_id: str, symbol: str) -> TradeResult:
        self._admit("order_status")
        data = await self._request(
            "GET",
            "/fapi/v1/order",
            params={"symbol": symbol, "orderId": order_id},
            context="get order status",
        )
        fees = 0.0
        if to_float(data.get("executedQty")) > 0:
            fees = await self._fetch_order_fees(order_id, symbol)
        return self._to_trade_result(data, fees=fees)

    async def _fetch_order_fees(self, order_id: str, symbol: str) -> float:
        """Sum the commission of every fill belonging to ``order_id``."""
        trades = await self._request(
            "GET",
            "/fapi/v1/userTrades",
            params={"symbol": symbol, "orderId": order_id},
            context="get order fees",
        )
        return sum(to_float(trade.get("commission")) for trade in trades)

    @staticmethod
    def _to_trade_result(data: dict[str, Any], *, fees: float | None) -> TradeResult:
        return TradeResult(
            order_id=str(data["orderId"]),
            symbol=data["symbol"],
            side=OrderSide(data["side"].lower()),
            quantity=to_float(data.get("origQty")),
            price=first_float(data.get("price"), data.get("avgPrice")),
            status=map_order_status(data.get("status"), BINANCE_STATUS),
            timestamp=from_millis(data.get("updateTime")),
            fees=fees,
        )

    def _ticker_frame(self, method: str, symbols: list[str]) -> dict[str, Any]:
        return {
            "method": method,
            "params": [f"{symbol.lower()}@ticker" for symbol in symbols],
            "id": self._timestamp_ms(),
        }

    async def _subscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return [self._ticker_frame("SUBSCRIBE", symbols)]

    async def _unsubscribe_frames(self, symbols: list[str]) -> list[dict[str, Any]]:
        return [self._ticker_frame("UNSUBSCRIBE", symbols)]

    def _parse_ticker(self, message: Any) -> MarketData | None:
        if not isinstance(message, dict) or message.get("e") != "24hrTicker":
            return None
        return MarketData(
            symbol=message["s"],
            price=to_float(message.get("c")),
            change_24h=to_float(message.get("P")),
            volume_24h=to_float(message.get("v")),
            timestamp=from_millis(message.get("E")),
        )

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp
import websockets

from ..errors import ExchangeRejection, TransientFetchError
from ..formatters import format_price
from ..models import Candle, OrderRequest, OrderResult, PendingOrder, Position, hold_side_for

log = logging.getLogger("bitget")

SUCCESS_CODE = "00000"

CANDLES_PATH = "/api/v2/mix/market/candles"
POSITIONS_PATH = "/api/v2/mix/position/all-position"
PENDING_ORDERS_PATH = "/api/v2/mix/order/orders-pending"
PLACE_ORDER_PATH = "/api/v2/mix/order/place-order"
FLASH_CLOSE_PATH = "/api/v2/mix/order/close-positions"
CANCEL_ORDER_PATH = "/api/v2/mix/order/cancel-order"
SET_LEVERAGE_PATH = "/api/v2/mix/account/set-leverage"

_GRANULARITY_UNITS = {"m": "m", "h": "H", "d": "D", "w": "W"}


def normalize_granularity(tf: str) -> str:
    """'1h' -> '1H', '15M' -> '15m'. Bitget is case sensitive on units."""
    tf = (tf or "").strip()
    if len(tf) < 2 or not tf[:-1].isdigit():
        raise ValueError(f"Unsupported timeframe: {tf!r}")
    unit = _GRANULARITY_UNITS.get(tf[-1].lower())
    if unit is None:
        raise ValueError(f"Unsupported timeframe: {tf!r}")
    return f"{int(tf[:-1])}{unit}"


def sign_payload(secret: str, prehash: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), prehash.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(mac).decode("ascii")


def _f(x: Any) -> Optional[float]:
    if x is None or x == "":
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def parse_candle(row: List[Any]) -> Candle:
    # [ts, open, high, low, close, baseVolume, quoteVolume]
    return Candle(
        timestamp_ms=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def parse_position(d: Dict[str, Any]) -> Position:
    return Position(
        symbol=str(d.get("symbol", "")).upper(),
        hold_side=str(d.get("holdSide", "")).lower(),
        size=_f(d.get("total")) or _f(d.get("available")) or 0.0,
        entry_price=_f(d.get("openPriceAvg")) or 0.0,
        unrealized_pnl=_f(d.get("unrealizedPL")) or 0.0,
        margin_size=_f(d.get("marginSize")),
        mark_price=_f(d.get("markPrice")),
        break_even_price=_f(d.get("breakEvenPrice")),
    )


def parse_order(d: Dict[str, Any]) -> PendingOrder:
    return PendingOrder(
        symbol=str(d.get("symbol", "")).upper(),
        side=str(d.get("side", "")).lower(),
        order_id=str(d.get("orderId", "")),
        price=_f(d.get("price")),
        size=_f(d.get("size")) or 0.0,
        trade_side=d.get("tradeSide"),
    )


def order_body(req: OrderRequest, product_type: str) -> Dict[str, str]:
    body = {
        "symbol": req.symbol,
        "productType": product_type,
        "marginMode": req.margin_mode,
        "marginCoin": req.margin_coin,
        "size": format_price(req.size),
        "side": req.side,
        "tradeSide": "open",
        "orderType": req.order_type,
        "force": req.force,
    }
    if req.order_type == "limit":
        body["price"] = format_price(req.price)
    if req.take_profit_price is not None:
        body["presetStopSurplusPrice"] = format_price(req.take_profit_price)
    if req.stop_loss_price is not None:
        body["presetStopLossPrice"] = format_price(req.stop_loss_price)
    return body


@dataclass(frozen=True)
class AccountEvent:
    channel: str
    action: Optional[str]
    data: Any


class BitgetGateway:
    """Bitget v2 mix (futures) REST + private WebSocket client."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        api_passphrase: str,
        *,
        base_url: str = "https://api.bitget.com",
        ws_private_url: str = "wss://ws.bitget.com/v2/ws/private",
        product_type: str = "USDT-FUTURES",
        margin_coin: str = "USDT",
        demo: bool = False,
        rest_timeout_s: int = 20,
        rest_conn_limit: int = 20,
        ws_ping_s: int = 25,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_passphrase = api_passphrase
        self.base_url = base_url.rstrip("/")
        self.ws_private_url = ws_private_url
        self.product_type = product_type
        self.margin_coin = margin_coin
        self.demo = demo
        self.rest_timeout_s = rest_timeout_s
        self.rest_conn_limit = rest_conn_limit
        self.ws_ping_s = ws_ping_s

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_read=max(5, int(self.rest_timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout(),
                connector=aiohttp.TCPConnector(limit=self.rest_conn_limit, ttl_dns_cache=300),
            )
        return self._session

    def _headers(self, method: str, request_path: str, body: str) -> Dict[str, str]:
        ts = str(int(time.time() * 1000))
        prehash = ts + method.upper() + request_path + body
        headers = {
            "ACCESS-KEY": self.api_key,
            "ACCESS-SIGN": sign_payload(self.api_secret, prehash),
            "ACCESS-TIMESTAMP": ts,
            "ACCESS-PASSPHRASE": self.api_passphrase,
            "Content-Type": "application/json",
            "locale": "en-US",
        }
        if self.demo:
            headers["paptrading"] = "1"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        query = urlencode({k: v for k, v in (params or {}).items() if v is not None})
        request_path = path + (f"?{query}" if query else "")
        body_str = json.dumps(body, separators=(",", ":")) if body else ""
        headers = self._headers(method, request_path, body_str)

        sess = await self._get_session()
        try:
            async with sess.request(method, self.base_url + request_path, data=body_str or None, headers=headers) as resp:
                text = await resp.text()
                status = resp.status
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise TransientFetchError(f"{method} {path} failed: {e!r}") from e

        if status == 429 or status >= 500:
            log.warning("rest_transient status=%s path=%s body=%s", status, path, text[:200])
            raise TransientFetchError(f"{method} {path} returned HTTP {status}")

        try:
            payload = json.loads(text)
        except ValueError:
            raise TransientFetchError(f"{method} {path} returned non-JSON body (HTTP {status}): {text[:200]}")

        code = str(payload.get("code", ""))
        if code == "429":
            raise TransientFetchError(f"{method} {path} rate limited: {payload.get('msg')}")
        if code != SUCCESS_CODE:
            raise ExchangeRejection(str(payload.get("msg") or f"HTTP {status}"), code=code, endpoint=path)
        return payload.get("data")

    # ---- market data ----

    async def get_candles(self, symbol: str, granularity: str, limit: int = 100) -> List[Candle]:
        data = await self._request(
            "GET",
            CANDLES_PATH,
            params={
                "symbol": symbol.upper(),
                "productType": self.product_type,
                "granularity": normalize_granularity(granularity),
                "limit": int(limit),
            },
        )
        out = [parse_candle(row) for row in (data or [])]
        out.sort(key=lambda c: c.timestamp_ms)
        return out

    # ---- account snapshots ----

    async def get_positions(self, product_type: Optional[str] = None) -> List[Position]:
        data = await self._request(
            "GET",
            POSITIONS_PATH,
            params={"productType": product_type or self.product_type, "marginCoin": self.margin_coin},
        )
        return [parse_position(d) for d in (data or [])]

    async def get_open_orders(self, symbol: str, product_type: Optional[str] = None) -> List[PendingOrder]:
        data = await self._request(
            "GET",
            PENDING_ORDERS_PATH,
            params={"symbol": symbol.upper(), "productType": product_type or self.product_type},
        )
        entrusted = (data or {}).get("entrustedList") or []
        return [parse_order(d) for d in entrusted]

    # ---- mutations ----

    async def close_position(self, symbol: str, hold_side: str, size: float, *, margin_mode: str = "isolated") -> Dict[str, Any]:
        """Close with a market order on the close leg (hedge mode)."""
        body = {
            "symbol": symbol.upper(),
            "productType": self.product_type,
            "marginMode": margin_mode,
            "marginCoin": self.margin_coin,
            "size": format_price(size),
            "side": "buy" if hold_side == "long" else "sell",
            "tradeSide": "close",
            "orderType": "market",
        }
        return await self._request("POST", PLACE_ORDER_PATH, body=body) or {}

    async def flash_close_position(self, symbol: str, hold_side: str) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            FLASH_CLOSE_PATH,
            body={"symbol": symbol.upper(), "productType": self.product_type, "holdSide": hold_side},
        ) or {}
        failures = data.get("failureList") or []
        if failures:
            first = failures[0]
            raise ExchangeRejection(
                str(first.get("errorMsg") or "flash close failed"),
                code=str(first.get("errorCode") or ""),
                endpoint=FLASH_CLOSE_PATH,
            )
        return data

    async def cancel_order(self, symbol: str, order_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            CANCEL_ORDER_PATH,
            body={
                "symbol": symbol.upper(),
                "productType": self.product_type,
                "marginCoin": self.margin_coin,
                "orderId": order_id,
            },
        ) or {}

    async def set_leverage(self, symbol: str, side: str, leverage: int) -> Dict[str, Any]:
        return await self._request(
            "POST",
            SET_LEVERAGE_PATH,
            body={
                "symbol": symbol.upper(),
                "productType": self.product_type,
                "marginCoin": self.margin_coin,
                "leverage": str(int(leverage)),
                "holdSide": hold_side_for(side),
            },
        ) or {}

    async def submit_order(self, req: OrderRequest) -> OrderResult:
        data = await self._request("POST", PLACE_ORDER_PATH, body=order_body(req, self.product_type)) or {}
        return OrderResult(order_id=data.get("orderId"), client_oid=data.get("clientOid"), raw=data)

    # ---- private websocket ----

    def _ws_login_msg(self) -> Dict[str, Any]:
        ts = str(int(time.time()))
        return {
            "op": "login",
            "args": [{
                "apiKey": self.api_key,
                "passphrase": self.api_passphrase,
                "timestamp": ts,
                "sign": sign_payload(self.api_secret, ts + "GET" + "/user/verify"),
            }],
        }

    async def _ws_keepalive(self, ws) -> None:
        while True:
            await asyncio.sleep(self.ws_ping_s)
            await ws.send("ping")

    async def stream_account_events(self, topics: List[str]) -> AsyncIterator[AccountEvent]:
        """Yields private-channel pushes for ``topics``. Auto-reconnects."""
        sub_msg = {
            "op": "subscribe",
            "args": [{"instType": self.product_type, "channel": t, "instId": "default"} for t in topics],
        }

        backoff = 1
        while True:
            try:
                async with websockets.connect(self.ws_private_url, ping_interval=None, close_timeout=5, max_queue=5000) as ws:
                    await ws.send(json.dumps(self._ws_login_msg()))
                    keepalive = asyncio.create_task(self._ws_keepalive(ws))
                    try:
                        async for msg in ws:
                            if msg == "pong":
                                continue
                            try:
                                j = json.loads(msg)
                            except ValueError:
                                continue

                            event = j.get("event")
                            if event == "login":
                                backoff = 1
                                await ws.send(json.dumps(sub_msg))
                                log.info("ws_logged_in topics=%s", topics)
                                continue
                            if event == "subscribe":
                                continue
                            if event == "error":
                                raise ExchangeRejection(str(j.get("msg")), code=str(j.get("code")), endpoint="ws")

                            arg = j.get("arg") or {}
                            if "data" in j:
                                yield AccountEvent(channel=str(arg.get("channel", "")), action=j.get("action"), data=j["data"])
                    finally:
                        keepalive.cancel()

            except Exception as e:
                log.warning("ws_error err=%s reconnect_in=%ss", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)

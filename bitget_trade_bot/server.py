from __future__ import annotations

import hmac
import logging
import time
from typing import Any, Dict, Iterable, Optional

from aiohttp import web

from .errors import TradeBotError, ValidationError
from .models import Signal, normalize_side
from .orchestrator import TradeOrchestrator
from .placer import positive_number

log = logging.getLogger("webhook_server")

REQUIRED_FIELDS = ("symbol", "price", "size", "orderType", "side")


def _num(body: Dict[str, Any], key: str, cast=float) -> Optional[float]:
    raw = body.get(key)
    if raw is None or raw == "":
        return None
    return positive_number(f"field '{key}'", raw, cast)


def parse_webhook_signal(body: Any) -> Signal:
    """Validate a webhook body and turn it into a Signal."""
    if not isinstance(body, dict):
        raise ValidationError("body must be a JSON object")
    missing = [k for k in REQUIRED_FIELDS if body.get(k) in (None, "")]
    if missing:
        raise ValidationError("Missing required fields: " + ", ".join(missing))
    try:
        side = normalize_side(str(body["side"]))
    except ValueError as e:
        raise ValidationError(str(e)) from e
    order_type = str(body["orderType"]).strip().lower()
    if order_type not in ("limit", "market"):
        raise ValidationError(f"orderType must be 'limit' or 'market', got {body['orderType']!r}")

    return Signal(
        symbol=str(body["symbol"]).strip().upper(),
        side=side,
        reference_price=_num(body, "price"),
        generated_at_ms=int(time.time() * 1000),
        source="webhook",
        size=_num(body, "size"),
        leverage=_num(body, "leverage", int),
        order_type=order_type,
        margin_coin=(str(body["marginCoin"]).strip().upper() if body.get("marginCoin") else None),
        margin_mode=(str(body["marginMode"]).strip().lower() if body.get("marginMode") else None),
        take_profit_price=_num(body, "presetTakeProfitPrice"),
        stop_loss_price=_num(body, "presetStopLossPrice"),
    )


class WebhookServer:
    def __init__(
        self,
        orchestrator: TradeOrchestrator,
        *,
        secret: str = "",
        host: str = "0.0.0.0",
        port: int = 3000,
        allowed_symbols: Optional[Iterable[str]] = None,
    ):
        self.orchestrator = orchestrator
        # None accepts any symbol
        self.allowed_symbols = {s.upper() for s in allowed_symbols} if allowed_symbols is not None else None
        self.secret = secret or ""
        self.host = host
        self.port = int(port)
        self.app = web.Application()
        self.app.add_routes([
            web.post("/webhook", self.handle_webhook),
            web.get("/healthz", self.health),
        ])
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host=self.host, port=self.port)
        await site.start()
        log.info("webhook_server_listening host=%s port=%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "symbols": self.orchestrator.states()})

    def _authorised(self, request: web.Request, body: Dict[str, Any]) -> bool:
        if not self.secret:
            return True
        given = str(body.get("secret") or request.headers.get("X-Webhook-Secret") or "")
        return hmac.compare_digest(given, self.secret)

    async def handle_webhook(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)

        if isinstance(body, dict) and not self._authorised(request, body):
            log.warning("webhook_unauthorised remote=%s", request.remote)
            return web.json_response({"error": "Unauthorised"}, status=401)

        try:
            sig = parse_webhook_signal(body)
            if self.allowed_symbols is not None and sig.symbol not in self.allowed_symbols:
                raise ValidationError(f"symbol {sig.symbol} is not enabled on this server")
        except ValidationError as e:
            log.info("webhook_rejected reason=%s", e)
            return web.json_response({"error": str(e)}, status=400)

        try:
            outcome = await self.orchestrator.on_signal(sig)
        except ValidationError as e:
            return web.json_response({"error": str(e)}, status=400)
        except TradeBotError as e:
            log.warning("webhook_order_failed symbol=%s side=%s err=%s", sig.symbol, sig.side, e)
            return web.json_response({"error": "Failed to place order", "detail": str(e)}, status=500)
        except Exception as e:
            log.exception("webhook_unexpected_error symbol=%s err=%s", sig.symbol, e)
            return web.json_response({"error": "Failed to place order"}, status=500)

        if outcome.status == "placed" and outcome.order is not None:
            return web.json_response({
                "status": "placed",
                "orderId": outcome.order.order_id,
                "clientOid": outcome.order.client_oid,
                "data": outcome.order.raw,
            })
        return web.json_response({"status": outcome.status, "reason": "already_positioned"})

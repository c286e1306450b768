from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import aiohttp

from ..formatters import format_price
from ..models import Signal

log = logging.getLogger("forwarder")


def webhook_payload(
    sig: Signal,
    *,
    size: float,
    leverage: int,
    order_type: str = "limit",
    margin_coin: str = "USDT",
    take_profit_price: Optional[float] = None,
    stop_loss_price: Optional[float] = None,
    secret: str = "",
) -> Dict[str, Any]:
    """Body understood by ``POST /webhook`` on another instance."""
    payload: Dict[str, Any] = {
        "symbol": sig.symbol,
        "price": format_price(sig.reference_price),
        "size": format_price(size),
        "orderType": order_type,
        "marginCoin": margin_coin,
        "side": sig.side,
        "leverage": str(int(leverage)),
    }
    tp = sig.take_profit_price if sig.take_profit_price is not None else take_profit_price
    sl = sig.stop_loss_price if sig.stop_loss_price is not None else stop_loss_price
    if tp is not None:
        payload["presetTakeProfitPrice"] = format_price(tp)
    if sl is not None:
        payload["presetStopLossPrice"] = format_price(sl)
    if secret:
        payload["secret"] = secret
    return payload


class WebhookForwarder:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_signal(self, sig: Signal, **fields) -> bool:
        if not self.enabled or not self.url:
            return False

        payload = webhook_payload(sig, secret=self.secret, **fields)
        log.info("forwarding_signal symbol=%s side=%s price=%s url=%s", sig.symbol, sig.side, payload["price"], self.url)
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload, headers=self.headers) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("forward_bad_status status=%s body=%s", resp.status, text[:200])
                        return False
            return True
        except Exception as e:
            # Log but do not crash
            log.warning("forward_post_failed err=%s", e)
            return False

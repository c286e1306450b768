from __future__ import annotations

from typing import Optional


class TradeBotError(Exception):
    """Base class for everything the bot raises on purpose."""


class TransientFetchError(TradeBotError):
    """Network failure, timeout or rate limit. The next poll cycle is the retry."""


class ValidationError(TradeBotError):
    """Bad or missing input (webhook fields, non-positive size, ...)."""


class ExchangeRejection(TradeBotError):
    """The exchange answered, but refused the request."""

    def __init__(self, msg: str, *, code: Optional[str] = None, endpoint: Optional[str] = None):
        super().__init__(msg)
        self.code = code
        self.msg = msg
        self.endpoint = endpoint

    def __str__(self) -> str:
        if self.code:
            return f"{self.msg} (code={self.code} endpoint={self.endpoint})"
        return self.msg


class ReconcileError(ExchangeRejection):
    """Opposing exposure is still open after a reconciliation pass."""

    def __init__(self, msg: str, report):
        super().__init__(msg)
        self.report = report


class FatalConfigError(TradeBotError):
    """Configuration is unusable; the process must not start."""


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, TransientFetchError):
        return "transient"
    if isinstance(exc, ValidationError):
        return "validation"
    if isinstance(exc, ExchangeRejection):
        return "rejected"
    return "unexpected"

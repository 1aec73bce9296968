"""Custom exceptions for the limit-order engine."""

from __future__ import annotations

from typing import Optional


class LimitEngineError(Exception):
    """Base exception for all limit-engine errors."""


class PriceFeedError(LimitEngineError):
    """Transient error reading a price from the feed."""


class SwapError(LimitEngineError):
    """Error preparing, submitting, or checking a swap."""


class TransientSwapError(SwapError):
    """Swap failed before anything was broadcast; retrying may help."""


class SwapRejectedError(TransientSwapError):
    """The RPC definitely rejected the transaction; it never reached the chain."""


class TerminalSwapError(SwapError):
    """Business failure (insufficient funds, unknown token, no route).

    Retrying cannot help, so the order fails without consuming a retry.
    """


class AmbiguousSwapError(SwapError):
    """Transaction may have been broadcast but its outcome is unknown."""

    def __init__(self, message: str, signature: Optional[str] = None) -> None:
        super().__init__(message)
        self.signature = signature


class OrderValidationError(LimitEngineError):
    """Order terms rejected at intake."""


class PersistenceError(LimitEngineError):
    """Database persistence failure."""


class ConfigError(LimitEngineError):
    """Missing or invalid configuration."""

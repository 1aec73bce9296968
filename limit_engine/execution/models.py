"""Shared data structures for swap execution."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from limit_engine.db.models import OrderType
from limit_engine.feeds.base import TokenPair


class TxStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class PreparedSwap:
    """A quoted, built and signed swap that has not been broadcast yet.

    The signature is known before broadcast, so it can be persisted first.
    """

    pair: TokenPair
    side: OrderType
    amount: float  # token units
    sol_amount: float  # SOL leg implied by the quote
    signature: str
    signed_tx: bytes = b""
    slippage_bps: int = 0
    last_valid_block_height: Optional[int] = None
    prepared_at: float = field(default_factory=time.time)

    @property
    def expected_price(self) -> float:
        return self.sol_amount / self.amount if self.amount > 0 else 0.0


@dataclass(slots=True)
class SwapReceipt:
    """Result of a broadcast swap."""

    signature: str
    pair: TokenPair
    side: OrderType
    amount: float
    sol_amount: float

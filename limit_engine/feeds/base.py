"""Price feed capability consumed by the engine."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

SOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass(frozen=True, slots=True)
class TokenPair:
    """A token priced in a base asset (SOL unless stated otherwise)."""

    token: str
    base: str = SOL_MINT

    @property
    def is_identity(self) -> bool:
        return self.token == self.base


@dataclass(slots=True)
class PriceQuote:
    """Price of one token unit in base-asset units, current at call time."""

    pair: TokenPair
    price: float
    as_of: float = field(default_factory=time.time)

    @property
    def age_seconds(self) -> float:
        return time.time() - self.as_of


@runtime_checkable
class PriceFeed(Protocol):
    """Anything that can price a token pair.

    Implementations raise PriceFeedError on any failure; the engine treats
    every such failure as transient.
    """

    async def quote(self, pair: TokenPair) -> PriceQuote: ...

"""Price feeds for the limit-order engine."""

from .base import PriceFeed, PriceQuote, TokenPair, SOL_MINT
from .jupiter import JupiterPriceFeed

__all__ = ["PriceFeed", "PriceQuote", "TokenPair", "SOL_MINT", "JupiterPriceFeed"]

"""Jupiter Price API feed.

Prices a token in SOL with ``GET /price?ids=<mint>&vsToken=<SOL mint>``.
The response maps each requested mint to ``{"id", "price"}`` where price is
a decimal string; unknown mints map to null.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from limit_engine.exceptions import PriceFeedError
from limit_engine.feeds.base import PriceQuote, TokenPair

logger = structlog.get_logger()

JUPITER_PRICE_API = "https://lite-api.jup.ag/price/v2"


class JupiterPriceFeed:
    """PriceFeed backed by the Jupiter Price API."""

    def __init__(
        self,
        api_url: str = JUPITER_PRICE_API,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=5.0))
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def quote(self, pair: TokenPair) -> PriceQuote:
        if pair.is_identity:
            return PriceQuote(pair=pair, price=1.0)

        client = await self._ensure_client()
        try:
            resp = await client.get(
                self.api_url, params={"ids": pair.token, "vsToken": pair.base})
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceFeedError(f"price request failed for {pair.token}: {exc}") from exc

        price = self._extract_price(payload, pair.token)
        if price is None or price <= 0:
            raise PriceFeedError(f"no price for {pair.token}")
        return PriceQuote(pair=pair, price=price)

    @staticmethod
    def _extract_price(payload: Any, mint: str) -> Optional[float]:
        if not isinstance(payload, dict):
            return None
        entry = (payload.get("data") or {}).get(mint)
        if not entry:
            return None
        try:
            return float(entry.get("price"))
        except (TypeError, ValueError):
            logger.warning("jupiter_price_unparseable", mint=mint, entry=entry)
            return None

"""Order intake used by the Telegram bot: create, cancel and list orders."""

from __future__ import annotations

import asyncio
import math
from typing import Optional

import structlog

from limit_engine.db.models import LimitOrder, OrderStatus, OrderType
from limit_engine.db.order_store import OrderStore
from limit_engine.exceptions import OrderValidationError
from limit_engine.feeds.base import SOL_MINT, PriceFeed, TokenPair
from limit_engine.notifications.base import NotificationSink, OrderEvent, notify_safely

logger = structlog.get_logger()

_PRICE_LOOKUP_TIMEOUT = 5.0


def _positive(raw, what: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise OrderValidationError(f"Invalid {what} format. Please enter a number.") from None
    if not math.isfinite(value) or value <= 0:
        raise OrderValidationError(f"{what.capitalize()} must be greater than zero")
    return value


def parse_price_and_amount(text: str) -> tuple[float, float, float]:
    """Parse ``"<price> <amount>"`` (e.g. ``"0.5 10"``) into (price, amount, total SOL)."""
    parts = (text or "").split()
    if len(parts) != 2:
        raise OrderValidationError(
            "Invalid format. Please enter price and amount separated by space (e.g. '0.5 10')")
    price = _positive(parts[0], "price")
    amount = _positive(parts[1], "amount")
    return price, amount, price * amount


class LimitOrderService:

    def __init__(
        self,
        store: OrderStore,
        price_feed: Optional[PriceFeed] = None,
        notifier: Optional[NotificationSink] = None,
        base_mint: str = SOL_MINT,
    ) -> None:
        self.store = store
        self.price_feed = price_feed
        self.notifier = notifier
        self.base_mint = base_mint

    async def create_order(
        self,
        user_id: int,
        token_address: str,
        order_type: str | OrderType,
        trigger_price: float,
        amount: float,
        *,
        token_symbol: Optional[str] = None,
    ) -> int:
        """Validate and persist a new PENDING order. Returns its id."""
        token_address = (token_address or "").strip()
        if not token_address:
            raise OrderValidationError("Token address is required")
        try:
            kind = OrderType.parse(order_type)
        except ValueError as exc:
            raise OrderValidationError(str(exc)) from None
        price = _positive(trigger_price, "price")
        size = _positive(amount, "amount")

        order = await self.store.create(
            user_id=user_id,
            token_address=token_address,
            token_symbol=token_symbol or token_address[:6],
            order_type=kind,
            price_in_sol=price,
            amount=size,
            current_price_in_sol=await self._current_price(token_address),
        )
        return order.id

    async def _current_price(self, token_address: str) -> Optional[float]:
        """Best-effort display price; intake never fails on a feed error."""
        if self.price_feed is None:
            return None
        try:
            quote = await asyncio.wait_for(
                self.price_feed.quote(TokenPair(token=token_address, base=self.base_mint)),
                timeout=_PRICE_LOOKUP_TIMEOUT)
        except Exception as exc:
            logger.debug("intake_price_unavailable", token=token_address, error=str(exc))
            return None
        return quote.price

    async def cancel_order(self, order_id: int, user_id: Optional[int] = None) -> bool:
        order = await self.store.cancel(order_id, user_id)
        if order is None:
            return False
        await notify_safely(self.notifier, OrderEvent.from_order(order))
        return True

    async def list_orders(
        self, user_id: int, status: Optional[OrderStatus] = None,
    ) -> list[LimitOrder]:
        return await self.store.list_for_user(user_id, status)

    async def list_active_orders(self, user_id: int) -> list[LimitOrder]:
        """PENDING and EXECUTING orders of the user."""
        orders = await self.store.list_for_user(user_id)
        return [o for o in orders if not o.is_terminal]

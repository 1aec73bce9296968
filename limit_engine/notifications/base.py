"""Terminal-transition events and the sink interface the bot consumes."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

import structlog

from limit_engine.db.models import LimitOrder, OrderStatus

logger = structlog.get_logger()


@dataclass(slots=True)
class OrderEvent:
    """Emitted once per order when it reaches FILLED, FAILED or CANCELLED."""

    order_id: int
    user_id: int
    status: OrderStatus
    order_type: str
    token_symbol: str
    token_address: str
    amount: float
    price_in_sol: float
    retry_count: int = 0
    market_price: Optional[float] = None
    total_sol: Optional[float] = None
    signature: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_order(
        cls,
        order: LimitOrder,
        *,
        market_price: Optional[float] = None,
        total_sol: Optional[float] = None,
        error: Optional[str] = None,
    ) -> "OrderEvent":
        return cls(
            order_id=order.id,
            user_id=order.user_id,
            status=OrderStatus(order.status),
            order_type=order.order_type,
            token_symbol=order.token_symbol,
            token_address=order.token_address,
            amount=order.amount,
            price_in_sol=order.price_in_sol,
            retry_count=order.retry_count,
            market_price=market_price,
            total_sol=total_sol,
            signature=order.tx_signature,
            error=error if error is not None else order.last_error,
        )


@runtime_checkable
class NotificationSink(Protocol):
    async def notify(self, event: OrderEvent) -> None: ...


class LogNotifier:
    """Sink that only logs; used when no Telegram token is configured."""

    async def notify(self, event: OrderEvent) -> None:
        logger.info("order_terminal_event", order_id=event.order_id,
                    user_id=event.user_id, status=event.status.value,
                    signature=event.signature, error=event.error)


async def notify_safely(sink: Optional[NotificationSink], event: OrderEvent) -> bool:
    """Deliver ``event``; delivery failures are logged and never raised."""
    if sink is None:
        return False
    try:
        await sink.notify(event)
        return True
    except Exception as exc:
        logger.warning("notification_failed", order_id=event.order_id,
                       status=event.status.value, error=str(exc))
        return False

"""Retry policy and settlement helpers shared by coordinator and reconciler.

The retry policy is pure data: a failure either bumps ``retry_count`` and
parks the order in PENDING until ``next_attempt_at``, or, once the count has
reached the maximum, fails it. The scheduler honours ``next_attempt_at``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import structlog

from limit_engine.db.models import LimitOrder, OrderStatus
from limit_engine.db.order_store import FillDetails, Settlement
from limit_engine.engine.context import EngineConfig, EngineContext
from limit_engine.notifications.base import OrderEvent, notify_safely
from limit_engine.utils.timeutil import utcnow

logger = structlog.get_logger()


def failure_settlement(
    retry_count: int,
    config: EngineConfig,
    error: str,
    *,
    now: Optional[datetime] = None,
) -> Settlement:
    """Retry with linear backoff while retries remain, otherwise FAILED."""
    if retry_count < config.max_retries:
        count = retry_count + 1
        delay = config.retry_backoff_seconds * count
        return Settlement(
            status=OrderStatus.PENDING,
            retry_count=count,
            next_attempt_at=(now or utcnow()) + timedelta(seconds=delay),
            error=error,
        )
    return Settlement(status=OrderStatus.FAILED, error=error)


def terminal_failure_settlement(error: str) -> Settlement:
    """Business failure: FAILED straight away, retry_count untouched."""
    return Settlement(status=OrderStatus.FAILED, error=error)


def requeue_settlement(reason: Optional[str] = None) -> Settlement:
    """Release a claim without consuming a retry."""
    return Settlement(status=OrderStatus.PENDING, error=reason)


async def settle_failure(
    ctx: EngineContext,
    order: LimitOrder,
    claim_token: Optional[str],
    error: str,
    *,
    terminal: bool = False,
) -> Optional[LimitOrder]:
    """Apply the retry rule (or fail outright) and notify on FAILED."""
    outcome = (
        terminal_failure_settlement(error)
        if terminal
        else failure_settlement(order.retry_count, ctx.config, error)
    )
    settled = await ctx.store.settle(order.id, outcome, claim_token=claim_token)
    if settled is None:
        return None
    if settled.status == OrderStatus.FAILED.value:
        logger.warning("order_failed", order_id=order.id,
                       retry_count=settled.retry_count, error=error)
        await notify_safely(ctx.notifier, OrderEvent.from_order(settled, error=error))
    else:
        logger.info("order_retry_scheduled", order_id=order.id,
                    retry_count=settled.retry_count,
                    next_attempt_at=str(settled.next_attempt_at), error=error)
    return settled


async def settle_fill(
    ctx: EngineContext,
    order: LimitOrder,
    claim_token: Optional[str],
    fill: FillDetails,
    *,
    market_price: Optional[float] = None,
) -> Optional[LimitOrder]:
    """Settle FILLED with its Trade and notify the owner."""
    settled = await ctx.store.settle(
        order.id, Settlement(status=OrderStatus.FILLED, fill=fill), claim_token=claim_token)
    if settled is None:
        return None
    logger.info("order_filled", order_id=order.id, signature=fill.signature,
                price=fill.price_in_sol, total_sol=fill.total_paid)
    await notify_safely(ctx.notifier, OrderEvent.from_order(
        settled, market_price=market_price, total_sol=fill.total_paid))
    return settled

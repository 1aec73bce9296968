"""Periodic price sweep that dispatches fired orders to a bounded worker pool."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Optional

import structlog

from limit_engine.db.models import LimitOrder
from limit_engine.engine.context import EngineContext
from limit_engine.engine.coordinator import ExecutionCoordinator, ExecutionOutcome
from limit_engine.engine.trigger import observe
from limit_engine.feeds.base import PriceQuote, TokenPair

logger = structlog.get_logger()


class Scheduler:
    """One tick = list due orders, quote each token once, fire what crossed.

    A tick never waits on executions; they run in the pool and an order
    already in flight is skipped by later ticks.
    """

    def __init__(self, ctx: EngineContext, coordinator: Optional[ExecutionCoordinator] = None) -> None:
        self.ctx = ctx
        self.coordinator = coordinator or ExecutionCoordinator(ctx)
        self._slots = asyncio.Semaphore(ctx.config.max_concurrent_executions)
        self._inflight: dict[int, asyncio.Task] = {}
        self._running = False

    @property
    def inflight(self) -> set[int]:
        return set(self._inflight)

    async def tick(self) -> list[int]:
        """Run one sweep. Returns ids of orders dispatched for execution."""
        orders = await self.ctx.store.list_active()
        by_token: dict[str, list[LimitOrder]] = defaultdict(list)
        for order in orders:
            if order.id in self._inflight:
                continue
            by_token[order.token_address].append(order)
        if not by_token:
            return []

        dispatched: list[int] = []
        for i, (token, group) in enumerate(by_token.items()):
            if i and self.ctx.config.price_request_spacing > 0:
                await asyncio.sleep(self.ctx.config.price_request_spacing)
            quote = await self._quote(token)
            if quote is None:
                continue

            fired = []
            for order in group:
                if observe(order, quote.price).fired:
                    fired.append(order)
            try:
                await self.ctx.store.update_observed_price([o.id for o in group], quote.price)
            except Exception as exc:
                logger.warning("price_cache_update_failed", token=token, error=str(exc))

            for order in fired:
                logger.info("order_triggered", order_id=order.id, order_type=order.order_type,
                            token=order.token_symbol, trigger=order.price_in_sol,
                            market=quote.price)
                self._dispatch(order, quote)
                dispatched.append(order.id)

        logger.debug("scheduler_tick", orders=len(orders), tokens=len(by_token),
                     dispatched=len(dispatched), inflight=len(self._inflight))
        return dispatched

    async def _quote(self, token: str) -> Optional[PriceQuote]:
        pair = TokenPair(token=token, base=self.ctx.config.base_mint)
        try:
            return await asyncio.wait_for(
                self.ctx.price_feed.quote(pair), timeout=self.ctx.config.price_timeout)
        except asyncio.TimeoutError:
            logger.warning("price_fetch_timeout", token=token)
        except Exception as exc:
            logger.warning("price_fetch_failed", token=token, error=str(exc))
        return None

    def _dispatch(self, order: LimitOrder, quote: PriceQuote) -> None:
        task = asyncio.create_task(self._execute(order, quote), name=f"limit-order-{order.id}")
        self._inflight[order.id] = task
        task.add_done_callback(lambda _t, oid=order.id: self._inflight.pop(oid, None))

    async def _execute(self, order: LimitOrder, quote: PriceQuote) -> ExecutionOutcome:
        async with self._slots:
            try:
                outcome = await self.coordinator.execute(order, quote)
            except Exception as exc:
                # Pool tasks are never awaited by the run loop.
                logger.exception("execution_task_error", order_id=order.id, error=str(exc))
                return ExecutionOutcome.ERROR
        logger.info("execution_finished", order_id=order.id, outcome=outcome.value)
        return outcome

    async def drain(self) -> None:
        """Wait for every in-flight execution to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def run_once(self) -> list[int]:
        dispatched = await self.tick()
        await self.drain()
        return dispatched

    async def run(self) -> None:
        self._running = True
        logger.info("scheduler_started", interval=self.ctx.config.poll_interval,
                    workers=self.ctx.config.max_concurrent_executions)
        while self._running:
            try:
                await self.tick()
            except Exception as exc:
                logger.error("scheduler_tick_error", error=str(exc))
            await asyncio.sleep(self.ctx.config.poll_interval)

    def stop(self) -> None:
        self._running = False

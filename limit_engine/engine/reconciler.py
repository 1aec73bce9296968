"""Recovery of orders stuck in EXECUTING (crash, timeout, ambiguous submit).

An order is only touched once it has been EXECUTING for longer than the
stale threshold, which exceeds the coordinator's own swap and confirmation
windows. Settlement goes through the order's current claim token, so a
coordinator that wakes up late cannot overwrite what the reconciler decided.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum
from typing import Optional

import structlog

from limit_engine.db.models import LimitOrder, OrderStatus
from limit_engine.db.order_store import FillDetails
from limit_engine.engine.context import EngineContext
from limit_engine.engine.settlement import requeue_settlement, settle_failure, settle_fill
from limit_engine.execution.models import TxStatus
from limit_engine.utils.timeutil import seconds_ago, utcnow

logger = structlog.get_logger()


class Resolution(str, Enum):
    REQUEUED = "requeued"
    FILLED = "filled"
    FAILED = "failed"
    RETRY = "retry"
    WAITING = "waiting"
    SKIPPED = "skipped"


def _failure_resolution(settled: Optional[LimitOrder]) -> Resolution:
    if settled is None:
        return Resolution.SKIPPED
    if settled.status == OrderStatus.FAILED.value:
        return Resolution.FAILED
    return Resolution.RETRY


class Reconciler:

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self._running = False

    async def run_once(self) -> dict[int, Resolution]:
        cfg = self.ctx.config
        stale = await self.ctx.store.list_stale_executing(seconds_ago(cfg.stale_executing_seconds))
        results: dict[int, Resolution] = {}
        for order in stale:
            try:
                results[order.id] = await self.reconcile_order(order)
            except Exception as exc:
                logger.error("reconcile_order_error", order_id=order.id, error=str(exc))
        if stale:
            logger.info("reconcile_pass", stale=len(stale),
                        resolved={k: v.value for k, v in results.items()})
        return results

    async def reconcile_order(self, order: LimitOrder) -> Resolution:
        store = self.ctx.store
        claim = order.claim_token

        if not order.tx_signature:
            # Never broadcast: safe to hand back to the scheduler.
            settled = await store.settle(
                order.id, requeue_settlement("recovered from stale EXECUTING"),
                claim_token=claim)
            if settled is None:
                return Resolution.SKIPPED
            logger.info("stale_order_requeued", order_id=order.id)
            return Resolution.REQUEUED

        try:
            status = await asyncio.wait_for(
                self.ctx.swap_service.get_transaction_status(order.tx_signature),
                timeout=self.ctx.config.swap_timeout)
        except Exception as exc:
            logger.warning("reconcile_status_unavailable", order_id=order.id,
                           signature=order.tx_signature, error=str(exc) or type(exc).__name__)
            return Resolution.WAITING

        if status is TxStatus.CONFIRMED:
            total = order.quoted_total_sol if order.quoted_total_sol is not None else order.total_sol
            price = total / order.amount if order.amount else order.price_in_sol
            fill = FillDetails(signature=order.tx_signature, amount=order.amount,
                               price_in_sol=price, total_paid=total)
            settled = await settle_fill(self.ctx, order, claim, fill)
            return Resolution.FILLED if settled is not None else Resolution.SKIPPED

        if status is TxStatus.FAILED:
            settled = await settle_failure(
                self.ctx, order, claim, f"transaction {order.tx_signature} failed on-chain")
            return _failure_resolution(settled)

        # Unknown to the cluster: it may still land until the grace window passes.
        age = utcnow() - order.updated_at
        if age < timedelta(seconds=self.ctx.config.not_found_grace_seconds):
            logger.info("reconcile_signature_pending", order_id=order.id,
                        signature=order.tx_signature, age_s=int(age.total_seconds()))
            return Resolution.WAITING
        settled = await settle_failure(
            self.ctx, order, claim,
            f"transaction {order.tx_signature} not found after {int(age.total_seconds())}s")
        return _failure_resolution(settled)

    async def run(self) -> None:
        self._running = True
        while self._running:
            await asyncio.sleep(self.ctx.config.reconcile_interval)
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("reconcile_loop_error", error=str(exc))

    def stop(self) -> None:
        self._running = False

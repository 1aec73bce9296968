from __future__ import annotations

import asyncio

import structlog

from limit_engine.engine.context import EngineContext
from limit_engine.engine.coordinator import ExecutionCoordinator
from limit_engine.engine.reconciler import Reconciler
from limit_engine.engine.scheduler import Scheduler

logger = structlog.get_logger()


class LimitOrderEngine:
    """Orchestrator: wires the scheduler and reconciler and runs their loops."""

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.coordinator = ExecutionCoordinator(ctx)
        self.scheduler = Scheduler(ctx, self.coordinator)
        self.reconciler = Reconciler(ctx)

    async def run(self) -> None:
        await self._startup()
        try:
            await asyncio.gather(
                self.scheduler.run(),
                self.reconciler.run(),
            )
        finally:
            await self.stop()

    async def run_once(self) -> list[int]:
        """Startup reconciliation plus a single tick, waiting for its executions."""
        await self._startup()
        return await self.scheduler.run_once()

    async def _startup(self) -> None:
        structlog.contextvars.bind_contextvars(engine=self.ctx.instance_id)
        logger.info("engine_startup", instance=self.ctx.instance_id)
        await self.ctx.store.bootstrap()
        # Orders left EXECUTING by a previous process are resolved before
        # the first tick can see them.
        await self.reconciler.run_once()
        logger.info("engine_ready")

    async def stop(self) -> None:
        self.scheduler.stop()
        self.reconciler.stop()
        await self.scheduler.drain()
        logger.info("engine_stopped")

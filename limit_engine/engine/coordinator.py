"""Execution coordinator: claim -> swap -> confirm -> settle for one order.

The swap is broadcast at most once per claim. Its signature is persisted
before broadcast; that write doubles as the cancellation gate. Anything that
goes wrong after broadcast without a definite answer is left EXECUTING for
the reconciler.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import structlog

from limit_engine.db.models import LimitOrder, OrderStatus, OrderType
from limit_engine.db.order_store import FillDetails
from limit_engine.engine.context import EngineContext
from limit_engine.engine.settlement import (
    requeue_settlement,
    settle_failure,
    settle_fill,
)
from limit_engine.engine.trigger import price_condition_met
from limit_engine.exceptions import (
    SwapRejectedError,
    TerminalSwapError,
)
from limit_engine.execution.models import PreparedSwap, TxStatus
from limit_engine.feeds.base import PriceQuote, TokenPair

logger = structlog.get_logger()


class ExecutionOutcome(str, Enum):
    CLAIM_LOST = "claim_lost"
    RELEASED = "released"
    CANCELLED = "cancelled"
    FILLED = "filled"
    RETRY = "retry"
    FAILED = "failed"
    AWAITING_RECONCILIATION = "awaiting_reconciliation"
    ERROR = "error"


class ExecutionCoordinator:

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    async def execute(self, order: LimitOrder, quote: PriceQuote) -> ExecutionOutcome:
        """Run one fired order through the state machine."""
        claim_token = self.ctx.new_claim_token()
        won = await self.ctx.store.try_claim(
            order.id, OrderStatus.PENDING, claim_token=claim_token)
        if not won:
            logger.debug("claim_lost", order_id=order.id)
            return ExecutionOutcome.CLAIM_LOST

        logger.info("order_claimed", order_id=order.id, claim=claim_token,
                    order_type=order.order_type, token=order.token_symbol,
                    trigger=order.price_in_sol, market=quote.price)
        try:
            return await self._run_claimed(order.id, claim_token, quote)
        except Exception as exc:
            # Order stays EXECUTING; the reconciler requeues or settles it
            # once it goes stale.
            logger.exception("execution_error", order_id=order.id, error=str(exc))
            return ExecutionOutcome.ERROR

    async def _run_claimed(
        self, order_id: int, claim_token: str, quote: PriceQuote,
    ) -> ExecutionOutcome:
        cfg = self.ctx.config
        store = self.ctx.store

        # Re-read: the user may have cancelled between discovery and claim.
        order = await store.get(order_id)
        if (order is None or order.status != OrderStatus.EXECUTING.value
                or order.claim_token != claim_token):
            logger.info("claimed_order_gone", order_id=order_id,
                        status=getattr(order, "status", None))
            return ExecutionOutcome.CANCELLED

        if (quote.age_seconds > cfg.max_quote_age
                or not price_condition_met(order.order_type, order.price_in_sol, quote.price)):
            await store.settle(order_id, requeue_settlement("stale trigger decision"),
                               claim_token=claim_token)
            logger.info("claim_released_stale_quote", order_id=order_id,
                        quote_age=round(quote.age_seconds, 1))
            return ExecutionOutcome.RELEASED

        pair = TokenPair(token=order.token_address, base=cfg.base_mint)

        # 1. Prepare (quote + build + sign). Nothing is broadcast here.
        try:
            prepared = await asyncio.wait_for(
                self.ctx.swap_service.prepare_swap(
                    order.user_id, pair, order.amount, OrderType(order.order_type),
                    cfg.slippage_bps),
                timeout=cfg.swap_timeout)
        except TerminalSwapError as exc:
            return await self._fail(order, claim_token, str(exc), terminal=True)
        except asyncio.TimeoutError:
            return await self._fail(order, claim_token, "swap preparation timed out")
        except Exception as exc:
            return await self._fail(order, claim_token, f"swap preparation failed: {exc}")

        # 2. Gate: persist the signature; refuses if the order was cancelled.
        gated = await store.record_signature(
            order_id, prepared.signature, claim_token=claim_token,
            quoted_total_sol=prepared.sol_amount)
        if not gated:
            logger.info("submission_gate_closed", order_id=order_id,
                        signature=prepared.signature)
            return ExecutionOutcome.CANCELLED

        # 3. Broadcast exactly once.
        try:
            signature = await asyncio.wait_for(
                self.ctx.swap_service.submit(prepared), timeout=cfg.swap_timeout)
        except TerminalSwapError as exc:
            return await self._fail(order, claim_token, str(exc), terminal=True)
        except SwapRejectedError as exc:
            return await self._fail(order, claim_token, str(exc))
        except Exception as exc:
            logger.warning("swap_outcome_ambiguous", order_id=order_id,
                           signature=prepared.signature, error=str(exc) or type(exc).__name__)
            return ExecutionOutcome.AWAITING_RECONCILIATION

        if signature != prepared.signature:
            # The reconciler resolves whatever tx_signature holds.
            replaced = await store.replace_signature(
                order_id, prepared.signature, signature, claim_token=claim_token)
            if not replaced:
                logger.warning("signature_not_replaced", order_id=order_id,
                               recorded=prepared.signature, signature=signature)
                return ExecutionOutcome.AWAITING_RECONCILIATION

        # 4. Confirm within a bounded wait.
        status = await self._await_confirmation(signature)
        if status is TxStatus.CONFIRMED:
            fill = self._fill_from(prepared, signature)
            settled = await settle_fill(self.ctx, order, claim_token, fill,
                                        market_price=quote.price)
            return ExecutionOutcome.FILLED if settled else ExecutionOutcome.CLAIM_LOST
        if status is TxStatus.FAILED:
            return await self._fail(order, claim_token, f"transaction {signature} failed on-chain")

        logger.warning("confirmation_timeout", order_id=order_id, signature=signature)
        return ExecutionOutcome.AWAITING_RECONCILIATION

    async def _fail(
        self, order: LimitOrder, claim_token: str, error: str, *, terminal: bool = False,
    ) -> ExecutionOutcome:
        settled = await settle_failure(self.ctx, order, claim_token, error, terminal=terminal)
        if settled is None:
            return ExecutionOutcome.CLAIM_LOST
        if settled.status == OrderStatus.FAILED.value:
            return ExecutionOutcome.FAILED
        return ExecutionOutcome.RETRY

    async def _await_confirmation(self, signature: str) -> TxStatus:
        """Poll status until CONFIRMED/FAILED or the confirmation timeout."""
        cfg = self.ctx.config
        loop = asyncio.get_running_loop()
        deadline = loop.time() + cfg.confirmation_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return TxStatus.UNKNOWN
            try:
                status = await asyncio.wait_for(
                    self.ctx.swap_service.get_transaction_status(signature),
                    timeout=remaining)
            except asyncio.TimeoutError:
                return TxStatus.UNKNOWN
            except Exception as exc:
                logger.warning("status_poll_failed", signature=signature, error=str(exc))
                status = TxStatus.UNKNOWN
            if status is not TxStatus.UNKNOWN:
                return status
            await asyncio.sleep(min(cfg.confirmation_poll_interval,
                                    max(deadline - loop.time(), 0)))

    @staticmethod
    def _fill_from(prepared: PreparedSwap, signature: str) -> FillDetails:
        return FillDetails(
            signature=signature,
            amount=prepared.amount,
            price_in_sol=prepared.expected_price,
            total_paid=prepared.sol_amount,
        )

"""Durable order store: the single source of truth for limit orders.

Every state change is a conditional UPDATE evaluated by the database, so the
store stays correct with several engine instances pointed at the same tables.
No method here trusts a previously read row.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from limit_engine.db.database import DEFAULT_ASYNC_DATABASE_URL, get_session, init_db_async
from limit_engine.db.models import LimitOrder, OrderStatus, OrderType, Trade
from limit_engine.exceptions import OrderValidationError, PersistenceError
from limit_engine.utils.timeutil import utcnow

logger = structlog.get_logger()

_NON_TERMINAL = (OrderStatus.PENDING.value, OrderStatus.EXECUTING.value)
_SETTLE_TARGETS = frozenset({OrderStatus.FILLED, OrderStatus.FAILED, OrderStatus.PENDING})


@dataclass(slots=True)
class FillDetails:
    """Realised execution of a swap."""

    signature: str
    amount: float
    price_in_sol: float
    total_paid: float


@dataclass(slots=True)
class Settlement:
    """Transition out of EXECUTING.

    PENDING releases the claim (retry or requeue), FAILED and FILLED are
    terminal. ``retry_count`` is only written when given.
    """

    status: OrderStatus
    fill: Optional[FillDetails] = None
    retry_count: Optional[int] = None
    next_attempt_at: Optional[datetime] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        self.status = OrderStatus(self.status)
        if self.status not in _SETTLE_TARGETS:
            raise ValueError(f"cannot settle to {self.status}")
        if self.status is OrderStatus.FILLED and self.fill is None:
            raise ValueError("FILLED settlement requires fill details")


class OrderStore:
    """Async CRUD and atomic transitions for LimitOrder / Trade rows."""

    def __init__(self, db_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
        self.db_url = db_url

    async def bootstrap(self) -> None:
        """Create tables if missing."""
        await init_db_async(self.db_url)

    # ── Intake ──────────────────────────────────────────────────────

    async def create(
        self,
        *,
        user_id: int,
        token_address: str,
        token_symbol: str,
        order_type: OrderType,
        price_in_sol: float,
        amount: float,
        current_price_in_sol: Optional[float] = None,
    ) -> LimitOrder:
        """Insert a new PENDING order.

        Raises OrderValidationError unless price and amount are finite and
        positive; the table carries the same CHECK constraints.
        """
        for value, what in ((price_in_sol, "price"), (amount, "amount")):
            if (isinstance(value, bool) or not isinstance(value, (int, float))
                    or not math.isfinite(value) or value <= 0):
                raise OrderValidationError(f"{what} must be a positive number, got {value!r}")
        now = utcnow()
        row = LimitOrder(
            user_id=user_id,
            token_address=token_address,
            token_symbol=token_symbol,
            order_type=OrderType(order_type).value,
            price_in_sol=price_in_sol,
            amount=amount,
            total_sol=price_in_sol * amount,
            current_price_in_sol=current_price_in_sol,
            status=OrderStatus.PENDING.value,
            retry_count=0,
            created_at=now,
            updated_at=now,
        )
        try:
            async with get_session(self.db_url) as s:
                s.add(row)
                await s.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc
        logger.info("limit_order_created", order_id=row.id, user_id=user_id,
                    order_type=row.order_type, token=token_symbol,
                    price=price_in_sol, amount=amount)
        return row

    # ── Queries ─────────────────────────────────────────────────────

    async def get(self, order_id: int) -> Optional[LimitOrder]:
        async with get_session(self.db_url) as s:
            return await s.get(LimitOrder, order_id)

    async def get_trade(self, order_id: int) -> Optional[Trade]:
        async with get_session(self.db_url) as s:
            return await s.scalar(select(Trade).where(Trade.order_id == order_id))

    async def list_active(
        self,
        token_address: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
        stale_before: Optional[datetime] = None,
    ) -> list[LimitOrder]:
        """PENDING orders whose retry backoff has elapsed.

        With ``stale_before``, EXECUTING orders last touched before it are
        included too.
        """
        now = now or utcnow()
        due = and_(
            LimitOrder.status == OrderStatus.PENDING.value,
            or_(LimitOrder.next_attempt_at.is_(None), LimitOrder.next_attempt_at <= now),
        )
        cond = due
        if stale_before is not None:
            cond = or_(due, and_(
                LimitOrder.status == OrderStatus.EXECUTING.value,
                LimitOrder.updated_at < stale_before,
            ))
        q = select(LimitOrder).where(cond)
        if token_address:
            q = q.where(LimitOrder.token_address == token_address)
        q = q.order_by(LimitOrder.created_at, LimitOrder.id)
        async with get_session(self.db_url) as s:
            result = await s.execute(q)
            return list(result.scalars().all())

    async def list_stale_executing(self, stale_before: datetime) -> list[LimitOrder]:
        q = (
            select(LimitOrder)
            .where(
                LimitOrder.status == OrderStatus.EXECUTING.value,
                LimitOrder.updated_at < stale_before,
            )
            .order_by(LimitOrder.updated_at)
        )
        async with get_session(self.db_url) as s:
            result = await s.execute(q)
            return list(result.scalars().all())

    async def list_for_user(
        self, user_id: int, status: Optional[OrderStatus] = None,
    ) -> list[LimitOrder]:
        """All orders of a user, newest activity first."""
        q = select(LimitOrder).where(LimitOrder.user_id == user_id)
        if status is not None:
            q = q.where(LimitOrder.status == OrderStatus(status).value)
        q = q.order_by(LimitOrder.updated_at.desc(), LimitOrder.id.desc())
        async with get_session(self.db_url) as s:
            result = await s.execute(q)
            return list(result.scalars().all())

    async def list_trades(self, user_id: int) -> list[Trade]:
        q = select(Trade).where(Trade.user_id == user_id).order_by(Trade.timestamp.desc())
        async with get_session(self.db_url) as s:
            result = await s.execute(q)
            return list(result.scalars().all())

    # ── Writes ──────────────────────────────────────────────────────

    async def update_observed_price(self, order_ids: Iterable[int], price: float) -> int:
        """Refresh the display-only price cache. Never changes status or updated_at."""
        ids = list(order_ids)
        if not ids:
            return 0
        async with get_session(self.db_url) as s:
            result = await s.execute(
                update(LimitOrder)
                .where(LimitOrder.id.in_(ids), LimitOrder.status.in_(_NON_TERMINAL))
                .values(current_price_in_sol=price)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def try_claim(
        self,
        order_id: int,
        expected_status: OrderStatus = OrderStatus.PENDING,
        *,
        claim_token: str,
    ) -> bool:
        """Atomically move PENDING -> EXECUTING. False if someone else won."""
        if OrderStatus(expected_status) is not OrderStatus.PENDING:
            raise ValueError("only PENDING orders can be claimed")
        async with get_session(self.db_url) as s:
            result = await s.execute(
                update(LimitOrder)
                .where(
                    LimitOrder.id == order_id,
                    LimitOrder.status == OrderStatus.PENDING.value,
                )
                .values(
                    status=OrderStatus.EXECUTING.value,
                    claim_token=claim_token,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
        logger.debug("claim_attempt", order_id=order_id, won=won)
        return won

    async def record_signature(
        self,
        order_id: int,
        signature: str,
        *,
        claim_token: str,
        quoted_total_sol: Optional[float] = None,
    ) -> bool:
        """Attach the swap signature. After this, cancellation is refused.

        False means the claim was lost (cancelled or requeued) and the swap
        must not be broadcast.
        """
        async with get_session(self.db_url) as s:
            result = await s.execute(
                update(LimitOrder)
                .where(
                    LimitOrder.id == order_id,
                    LimitOrder.status == OrderStatus.EXECUTING.value,
                    LimitOrder.claim_token == claim_token,
                    LimitOrder.tx_signature.is_(None),
                )
                .values(
                    tx_signature=signature,
                    quoted_total_sol=quoted_total_sol,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def replace_signature(
        self,
        order_id: int,
        recorded: str,
        signature: str,
        *,
        claim_token: str,
    ) -> bool:
        """Swap the recorded signature for the one the RPC node reported.

        Only applies while ``claim_token`` still holds the EXECUTING order and
        ``recorded`` is the stored signature.
        """
        async with get_session(self.db_url) as s:
            result = await s.execute(
                update(LimitOrder)
                .where(
                    LimitOrder.id == order_id,
                    LimitOrder.status == OrderStatus.EXECUTING.value,
                    LimitOrder.claim_token == claim_token,
                    LimitOrder.tx_signature == recorded,
                )
                .values(tx_signature=signature, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            replaced = result.rowcount == 1
        logger.info("signature_replaced", order_id=order_id, recorded=recorded,
                    signature=signature, applied=replaced)
        return replaced

    async def settle(
        self,
        order_id: int,
        outcome: Settlement,
        *,
        claim_token: Optional[str],
    ) -> Optional[LimitOrder]:
        """Apply ``outcome`` to an EXECUTING order held by ``claim_token``.

        The status update and the Trade insert share one transaction. Returns
        the updated order, or None when the order is no longer EXECUTING under
        that claim (already settled, cancelled, or requeued).
        """
        now = utcnow()
        values: dict = {
            "status": outcome.status.value,
            "updated_at": now,
            "claim_token": None,
        }
        if outcome.status is OrderStatus.FILLED:
            values["tx_signature"] = outcome.fill.signature
            values["next_attempt_at"] = None
        else:
            values["tx_signature"] = None
            values["quoted_total_sol"] = None
        if outcome.status is OrderStatus.PENDING:
            values["next_attempt_at"] = outcome.next_attempt_at
        if outcome.retry_count is not None:
            values["retry_count"] = outcome.retry_count
        if outcome.error is not None:
            values["last_error"] = outcome.error[:2000]

        claim_cond = (
            LimitOrder.claim_token.is_(None)
            if claim_token is None
            else LimitOrder.claim_token == claim_token
        )
        try:
            async with get_session(self.db_url) as s:
                result = await s.execute(
                    update(LimitOrder)
                    .where(
                        LimitOrder.id == order_id,
                        LimitOrder.status == OrderStatus.EXECUTING.value,
                        claim_cond,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.info("settle_skipped_not_executing", order_id=order_id,
                                target=outcome.status.value)
                    return None
                order = await s.get(LimitOrder, order_id)
                if outcome.status is OrderStatus.FILLED:
                    existing = await s.scalar(select(Trade).where(Trade.order_id == order_id))
                    if existing is None:
                        fill = outcome.fill
                        s.add(Trade(
                            order_id=order.id,
                            user_id=order.user_id,
                            token_address=order.token_address,
                            token_symbol=order.token_symbol,
                            trade_type=order.order_type,
                            amount=fill.amount,
                            price_in_sol=fill.price_in_sol,
                            total_paid=fill.total_paid,
                            tx_signature=fill.signature,
                            timestamp=now,
                        ))
                    else:
                        logger.warning("trade_already_recorded", order_id=order_id,
                                       trade_id=existing.id)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc
        logger.info("order_settled", order_id=order_id, status=outcome.status.value,
                    retry_count=order.retry_count)
        return order

    async def cancel(self, order_id: int, user_id: Optional[int] = None) -> Optional[LimitOrder]:
        """Cancel a PENDING order, or an EXECUTING one with no signature yet.

        Returns the cancelled order, or None when cancellation is refused.
        """
        cond = [
            LimitOrder.id == order_id,
            or_(
                LimitOrder.status == OrderStatus.PENDING.value,
                and_(
                    LimitOrder.status == OrderStatus.EXECUTING.value,
                    LimitOrder.tx_signature.is_(None),
                ),
            ),
        ]
        if user_id is not None:
            cond.append(LimitOrder.user_id == user_id)
        async with get_session(self.db_url) as s:
            result = await s.execute(
                update(LimitOrder)
                .where(*cond)
                .values(
                    status=OrderStatus.CANCELLED.value,
                    claim_token=None,
                    next_attempt_at=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info("cancel_refused", order_id=order_id)
                return None
            order = await s.get(LimitOrder, order_id)
        logger.info("limit_order_cancelled", order_id=order_id)
        return order

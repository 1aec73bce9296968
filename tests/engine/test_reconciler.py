import pytest
from sqlalchemy import func, select

from conftest import create_order, make_ctx, make_swap_service
from limit_engine.db.database import get_session
from limit_engine.db.models import Trade
from limit_engine.engine.reconciler import Reconciler, Resolution
from limit_engine.exceptions import TransientSwapError
from limit_engine.execution.models import TxStatus


async def _stuck(store, *, signature=None, quoted_total_sol=None, **kw):
    """An order left EXECUTING by a process that died."""
    order = await create_order(store, **kw)
    await store.try_claim(order.id, claim_token="dead-instance:1")
    if signature:
        await store.record_signature(order.id, signature, claim_token="dead-instance:1",
                                     quoted_total_sol=quoted_total_sol)
    return order


async def _trade_count(store) -> int:
    async with get_session(store.db_url) as s:
        return await s.scalar(select(func.count()).select_from(Trade))


@pytest.mark.asyncio
async def test_confirmed_signature_settles_once(open_store):
    async with open_store() as store:
        swap = make_swap_service(status=TxStatus.CONFIRMED)
        ctx = make_ctx(store, swap_service=swap, stale_executing_seconds=0)
        order = await _stuck(store, signature="sig-landed", quoted_total_sol=9.5, amount=1000)
        reconciler = Reconciler(ctx)

        assert await reconciler.run_once() == {order.id: Resolution.FILLED}
        assert await reconciler.run_once() == {}

        filled = await store.get(order.id)
        assert filled.status == "FILLED"
        assert filled.tx_signature == "sig-landed"
        trade = await store.get_trade(order.id)
        assert trade.total_paid == pytest.approx(9.5)
        assert trade.price_in_sol == pytest.approx(0.0095)
        assert await _trade_count(store) == 1


@pytest.mark.asyncio
async def test_confirmed_without_quote_uses_order_total(open_store):
    async with open_store() as store:
        ctx = make_ctx(store, stale_executing_seconds=0)
        order = await _stuck(store, signature="sig", price=0.01, amount=1000)

        await Reconciler(ctx).run_once()

        trade = await store.get_trade(order.id)
        assert trade.total_paid == pytest.approx(10.0)
        assert trade.price_in_sol == pytest.approx(0.01)


@pytest.mark.asyncio
async def test_unsigned_order_is_requeued_without_retry(open_store):
    async with open_store() as store:
        ctx = make_ctx(store, stale_executing_seconds=0)
        order = await _stuck(store)

        assert await Reconciler(ctx).run_once() == {order.id: Resolution.REQUEUED}

        requeued = await store.get(order.id)
        assert requeued.status == "PENDING"
        assert requeued.retry_count == 0
        assert requeued.claim_token is None
        ctx.swap_service.get_transaction_status.assert_not_called()


@pytest.mark.asyncio
async def test_failed_transaction_consumes_retry(open_store):
    async with open_store() as store:
        ctx = make_ctx(store, swap_service=make_swap_service(status=TxStatus.FAILED),
                       stale_executing_seconds=0)
        order = await _stuck(store, signature="sig-bad")

        assert await Reconciler(ctx).run_once() == {order.id: Resolution.RETRY}

        retried = await store.get(order.id)
        assert retried.status == "PENDING"
        assert retried.retry_count == 1
        assert retried.tx_signature is None


@pytest.mark.asyncio
async def test_unknown_signature_waits_for_grace_period(open_store):
    async with open_store() as store:
        swap = make_swap_service(status=TxStatus.UNKNOWN)
        ctx = make_ctx(store, swap_service=swap, stale_executing_seconds=0,
                       not_found_grace_seconds=900)
        order = await _stuck(store, signature="sig-lost")

        assert await Reconciler(ctx).run_once() == {order.id: Resolution.WAITING}
        assert (await store.get(order.id)).status == "EXECUTING"

        ctx.config.not_found_grace_seconds = 0
        assert await Reconciler(ctx).run_once() == {order.id: Resolution.RETRY}
        assert (await store.get(order.id)).retry_count == 1


@pytest.mark.asyncio
async def test_status_error_leaves_order_alone(open_store):
    async with open_store() as store:
        swap = make_swap_service()
        swap.get_transaction_status.side_effect = TransientSwapError("rpc down")
        ctx = make_ctx(store, swap_service=swap, stale_executing_seconds=0)
        order = await _stuck(store, signature="sig")

        assert await Reconciler(ctx).run_once() == {order.id: Resolution.WAITING}
        assert (await store.get(order.id)).status == "EXECUTING"


@pytest.mark.asyncio
async def test_recent_executing_orders_are_not_touched(open_store):
    async with open_store() as store:
        ctx = make_ctx(store, stale_executing_seconds=300)
        order = await _stuck(store)

        assert await Reconciler(ctx).run_once() == {}
        assert (await store.get(order.id)).status == "EXECUTING"


from unittest.mock import AsyncMock

import pytest

from conftest import TOKEN
from limit_engine.db.models import OrderStatus
from limit_engine.exceptions import OrderValidationError, PriceFeedError
from limit_engine.feeds.base import PriceQuote
from limit_engine.orders.service import LimitOrderService, parse_price_and_amount


def test_parse_price_and_amount():
    price, amount, total = parse_price_and_amount("0.5 10")
    assert (price, amount) == (0.5, 10.0)
    assert total == pytest.approx(5.0)
    assert parse_price_and_amount("  0.001   2500 ")[1] == 2500.0


@pytest.mark.parametrize("text", ["", "0.5", "0.5 10 3", "abc 10", "0.5 ten",
                                  "0 10", "0.5 -1", "nan 10", "inf 1"])
def test_parse_rejects_bad_input(text):
    with pytest.raises(OrderValidationError):
        parse_price_and_amount(text)


@pytest.mark.asyncio
async def test_create_order_records_display_price(open_store):
    async with open_store() as store:
        feed = AsyncMock()
        feed.quote.side_effect = lambda pair: PriceQuote(pair=pair, price=0.012)
        service = LimitOrderService(store, price_feed=feed)

        order_id = await service.create_order(42, TOKEN, "buy", 0.01, 1000, token_symbol="BONK")

        order = await store.get(order_id)
        assert order.status == "PENDING"
        assert order.order_type == "BUY"
        assert order.total_sol == pytest.approx(10.0)
        assert order.current_price_in_sol == pytest.approx(0.012)


@pytest.mark.asyncio
async def test_create_order_survives_feed_failure(open_store):
    async with open_store() as store:
        feed = AsyncMock()
        feed.quote.side_effect = PriceFeedError("down")
        service = LimitOrderService(store, price_feed=feed)

        order_id = await service.create_order(42, TOKEN, "SELL", 0.02, 5)

        order = await store.get(order_id)
        assert order.current_price_in_sol is None
        assert order.token_symbol == TOKEN[:6]


@pytest.mark.asyncio
@pytest.mark.parametrize("token,kind,price,amount", [
    ("", "BUY", 1.0, 1.0),
    (TOKEN, "HOLD", 1.0, 1.0),
    (TOKEN, "BUY", 0.0, 1.0),
    (TOKEN, "SELL", 1.0, -5.0),
    (TOKEN, "SELL", float("nan"), 1.0),
    (TOKEN, "BUY", "cheap", 1.0),
    (TOKEN, "BUY", None, 1.0),
    (TOKEN, "SELL", 1.0, object()),
])
async def test_create_order_validation(open_store, token, kind, price, amount):
    async with open_store() as store:
        service = LimitOrderService(store)
        with pytest.raises(OrderValidationError):
            await service.create_order(42, token, kind, price, amount)
        assert await store.list_for_user(42) == []


@pytest.mark.asyncio
async def test_create_order_coerces_numeric_strings(open_store):
    async with open_store() as store:
        order_id = await LimitOrderService(store).create_order(42, TOKEN, "sell", "0.5", "10")

        order = await store.get(order_id)
        assert order.price_in_sol == pytest.approx(0.5)
        assert order.amount == pytest.approx(10.0)
        assert order.total_sol == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_cancel_order_notifies_owner(open_store):
    async with open_store() as store:
        notifier = AsyncMock()
        service = LimitOrderService(store, notifier=notifier)
        order_id = await service.create_order(42, TOKEN, "BUY", 0.01, 10)

        assert not await service.cancel_order(order_id, user_id=99)
        assert await service.cancel_order(order_id, user_id=42)
        assert not await service.cancel_order(order_id, user_id=42)

        notifier.notify.assert_awaited_once()
        event = notifier.notify.call_args.args[0]
        assert event.status is OrderStatus.CANCELLED
        assert event.user_id == 42


@pytest.mark.asyncio
async def test_list_active_orders_excludes_terminal(open_store):
    async with open_store() as store:
        service = LimitOrderService(store)
        keep = await service.create_order(42, TOKEN, "BUY", 0.01, 10)
        gone = await service.create_order(42, TOKEN, "SELL", 0.05, 10)
        await service.cancel_order(gone)

        active = await service.list_active_orders(42)
        assert [o.id for o in active] == [keep]
        assert len(await service.list_orders(42)) == 2
        cancelled = await service.list_orders(42, OrderStatus.CANCELLED)
        assert [o.id for o in cancelled] == [gone]

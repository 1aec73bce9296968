from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from limit_engine.db.database import close_db_async
from limit_engine.db.models import OrderType
from limit_engine.db.order_store import OrderStore
from limit_engine.engine.context import EngineConfig, EngineContext
from limit_engine.execution.models import PreparedSwap, TxStatus
from limit_engine.feeds.base import PriceQuote, TokenPair

TOKEN = "BonkMint1111111111111111111111111111111111"


@pytest.fixture
def open_store(tmp_path):
    """Async context manager yielding a bootstrapped store on a fresh SQLite file."""

    @asynccontextmanager
    async def _open():
        url = f"sqlite+aiosqlite:///{tmp_path}/orders.db"
        store = OrderStore(url)
        await store.bootstrap()
        try:
            yield store
        finally:
            await close_db_async(url)

    return _open


def fast_config(**overrides) -> EngineConfig:
    defaults = dict(
        poll_interval=0.01,
        price_request_spacing=0.0,
        retry_backoff_seconds=0.0,
        confirmation_timeout=0.5,
        confirmation_poll_interval=0.01,
        swap_timeout=1.0,
        price_timeout=1.0,
    )
    defaults.update(overrides)
    return EngineConfig(**defaults)


def prepared_for(pair: TokenPair, amount: float, side: OrderType, price: float,
                 signature: str = "sig-1") -> PreparedSwap:
    return PreparedSwap(pair=pair, side=OrderType(side), amount=amount,
                        sol_amount=amount * price, signature=signature)


def make_swap_service(price: float = 0.009, status: TxStatus = TxStatus.CONFIRMED) -> AsyncMock:
    """Swap service that signs at ``price`` and confirms every transaction."""
    service = AsyncMock()
    counter = {"n": 0}

    async def prepare(user_id, pair, amount, side, max_slippage_bps):
        counter["n"] += 1
        return prepared_for(pair, amount, side, price, signature=f"sig-{counter['n']}")

    async def submit(prepared):
        return prepared.signature

    service.prepare_swap.side_effect = prepare
    service.submit.side_effect = submit
    service.get_transaction_status.return_value = status
    return service


def make_price_feed(*prices: float) -> AsyncMock:
    """Feed returning ``prices`` in sequence, repeating the last one."""
    feed = AsyncMock()
    seq = list(prices)

    async def quote(pair):
        price = seq.pop(0) if len(seq) > 1 else seq[0]
        return PriceQuote(pair=pair, price=price)

    feed.quote.side_effect = quote
    return feed


def make_ctx(store, *, price_feed=None, swap_service=None, notifier=None, **config) -> EngineContext:
    return EngineContext(
        config=fast_config(**config),
        store=store,
        price_feed=price_feed or make_price_feed(0.009),
        swap_service=swap_service or make_swap_service(),
        notifier=notifier,
    )


async def create_order(store, *, order_type="BUY", price=0.01, amount=1000.0,
                       user_id=42, token=TOKEN):
    return await store.create(
        user_id=user_id,
        token_address=token,
        token_symbol="BONK",
        order_type=OrderType.parse(order_type),
        price_in_sol=price,
        amount=amount,
    )

"""Swap service protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from limit_engine.db.models import OrderType
from limit_engine.execution.models import PreparedSwap, SwapReceipt, TxStatus
from limit_engine.feeds.base import TokenPair


@runtime_checkable
class SwapServiceProtocol(Protocol):
    """Interface every DEX swap backend must satisfy.

    Error contract:
    - prepare_swap raises TransientSwapError or TerminalSwapError; nothing
      has been broadcast in either case. The swap is signed by the wallet of
      ``user_id``; an owner without a usable wallet is terminal.
    - submit raises SwapRejectedError / TerminalSwapError when the RPC
      refused the transaction, AmbiguousSwapError when it may be on-chain.
    """

    async def prepare_swap(
        self,
        user_id: int,
        pair: TokenPair,
        amount: float,
        side: OrderType,
        max_slippage_bps: int,
    ) -> PreparedSwap: ...

    async def submit(self, prepared: PreparedSwap) -> str: ...

    async def get_transaction_status(self, signature: str) -> TxStatus: ...


async def swap(
    service: SwapServiceProtocol,
    user_id: int,
    pair: TokenPair,
    amount: float,
    side: OrderType,
    max_slippage_bps: int,
) -> SwapReceipt:
    """One-shot prepare + submit for callers that do not need the gate in between."""
    prepared = await service.prepare_swap(user_id, pair, amount, side, max_slippage_bps)
    signature = await service.submit(prepared)
    return SwapReceipt(
        signature=signature,
        pair=pair,
        side=side,
        amount=prepared.amount,
        sol_amount=prepared.sol_amount,
    )

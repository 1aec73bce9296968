from limit_engine.execution.models import (
    PreparedSwap,
    SwapReceipt,
    TxStatus,
)
from limit_engine.execution.executor import SwapServiceProtocol, swap
from limit_engine.execution.jupiter_swap import JupiterSwapService
from limit_engine.execution.wallets import KeypairResolver, UserWalletDirectory

__all__ = [
    "PreparedSwap",
    "SwapReceipt",
    "TxStatus",
    "SwapServiceProtocol",
    "swap",
    "JupiterSwapService",
    "KeypairResolver",
    "UserWalletDirectory",
]

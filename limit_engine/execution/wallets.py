"""Signing keypairs per order owner."""

from __future__ import annotations

from typing import Awaitable, Callable

import structlog
from solders.keypair import Keypair
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from limit_engine.db.database import get_session
from limit_engine.db.models import User
from limit_engine.exceptions import TerminalSwapError, TransientSwapError

logger = structlog.get_logger()

# Telegram user id -> keypair that signs that user's swaps
KeypairResolver = Callable[[int], Awaitable[Keypair]]


class UserWalletDirectory:
    """KeypairResolver over the bot's ``users`` table.

    A user without a stored key, or whose key does not match the recorded
    address, cannot trade: that is a TerminalSwapError. A database failure
    is transient.
    """

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url

    async def __call__(self, user_id: int) -> Keypair:
        try:
            async with get_session(self.db_url) as s:
                user = await s.scalar(select(User).where(User.telegram_id == user_id))
        except SQLAlchemyError as exc:
            raise TransientSwapError(f"wallet lookup failed: {exc}") from exc

        if user is None or not user.encrypted_private_key:
            raise TerminalSwapError(f"no wallet for user {user_id}")
        try:
            keypair = Keypair.from_base58_string(user.encrypted_private_key)
        except ValueError as exc:
            raise TerminalSwapError(f"unreadable wallet key for user {user_id}") from exc
        if user.solana_address and str(keypair.pubkey()) != user.solana_address:
            logger.error("wallet_address_mismatch", user_id=user_id,
                         address=user.solana_address)
            raise TerminalSwapError(f"wallet key does not match address for user {user_id}")
        return keypair

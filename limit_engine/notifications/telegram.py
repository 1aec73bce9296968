"""Telegram relay for limit-order outcomes."""

from __future__ import annotations

import html
from typing import Optional

import httpx
import structlog

from limit_engine.db.models import OrderStatus
from limit_engine.notifications.base import OrderEvent

logger = structlog.get_logger()

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
EXPLORER_TX_URL = "https://explorer.solana.com/tx/{signature}"


class TelegramNotifier:
    """Sends order outcomes to the owner's private chat.

    Telegram private chat ids equal user ids, so the order owner is the
    recipient.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        explorer_url: str = EXPLORER_TX_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.bot_token = bot_token
        self.explorer_url = explorer_url
        self._client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def notify(self, event: OrderEvent) -> None:
        if not self.bot_token:
            logger.warning("telegram_not_configured")
            return
        client = await self._ensure_client()
        resp = await client.post(
            TELEGRAM_API_URL.format(token=self.bot_token),
            json={
                "chat_id": event.user_id,
                "text": self.format_message(event),
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )
        resp.raise_for_status()
        logger.debug("telegram_sent", order_id=event.order_id, status=event.status.value)

    def format_message(self, event: OrderEvent) -> str:
        symbol = html.escape(event.token_symbol)
        head = (f"Your limit {event.order_type} order #{event.order_id}")
        terms = f"• {event.amount:g} {symbol} at {event.price_in_sol:.6f} SOL"

        if event.status is OrderStatus.FILLED:
            lines = ["✅ <b>Limit Order Executed</b>", "", f"{head} has been filled:", terms]
            if event.market_price is not None:
                lines.append(f"• Market price: {event.market_price:.6f} SOL")
            if event.total_sol is not None:
                lines.append(f"• Total: {event.total_sol:.6f} SOL")
            if event.signature:
                url = self.explorer_url.format(signature=event.signature)
                lines.append(f'• Transaction: <a href="{url}">View on Explorer</a>')
            return "\n".join(lines)

        if event.status is OrderStatus.FAILED:
            error = html.escape(event.error or "Unknown error")
            return "\n".join([
                "❌ <b>Limit Order Failed</b>",
                "",
                f"{head} could not be executed:",
                terms,
                f"• Attempts: {event.retry_count + 1}",
                f"• Error: {error}",
                "",
                "The order has been marked as failed. Please check your wallet and try again.",
            ])

        return "\n".join([
            "🚫 <b>Limit Order Cancelled</b>",
            "",
            f"{head} has been cancelled:",
            terms,
        ])

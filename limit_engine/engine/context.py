"""Explicit engine context: configuration plus collaborator handles.

Every engine component receives one of these instead of reaching for
module-level state, so several engines (or tests) can coexist in a process.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from limit_engine.db.order_store import OrderStore
from limit_engine.execution.executor import SwapServiceProtocol
from limit_engine.feeds.base import SOL_MINT, PriceFeed
from limit_engine.notifications.base import NotificationSink


@dataclass(slots=True)
class EngineConfig:
    poll_interval: float = 30.0
    max_concurrent_executions: int = 4
    price_request_spacing: float = 0.2
    max_retries: int = 5
    retry_backoff_seconds: float = 30.0
    slippage_bps: int = 50
    base_mint: str = SOL_MINT

    price_timeout: float = 10.0
    max_quote_age: float = 60.0
    swap_timeout: float = 30.0
    confirmation_timeout: float = 60.0
    confirmation_poll_interval: float = 2.0

    reconcile_interval: float = 120.0
    stale_executing_seconds: float = 300.0
    not_found_grace_seconds: float = 900.0

    @classmethod
    def from_settings(cls, settings: Any) -> "EngineConfig":
        return cls(
            poll_interval=settings.LIMIT_POLL_INTERVAL_SECONDS,
            max_concurrent_executions=settings.LIMIT_MAX_CONCURRENT_EXECUTIONS,
            price_request_spacing=settings.PRICE_REQUEST_SPACING_SECONDS,
            max_retries=settings.MAX_RETRIES,
            retry_backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
            slippage_bps=settings.DEFAULT_SLIPPAGE_BPS,
            base_mint=settings.SOL_MINT,
            price_timeout=settings.PRICE_TIMEOUT_SECONDS,
            max_quote_age=settings.MAX_QUOTE_AGE_SECONDS,
            swap_timeout=settings.SWAP_TIMEOUT_SECONDS,
            confirmation_timeout=settings.CONFIRMATION_TIMEOUT_SECONDS,
            confirmation_poll_interval=settings.CONFIRMATION_POLL_SECONDS,
            reconcile_interval=settings.RECONCILE_INTERVAL_SECONDS,
            stale_executing_seconds=settings.STALE_EXECUTING_SECONDS,
            not_found_grace_seconds=settings.NOT_FOUND_GRACE_SECONDS,
        )


@dataclass(slots=True)
class EngineContext:
    config: EngineConfig
    store: OrderStore
    price_feed: PriceFeed
    swap_service: SwapServiceProtocol
    notifier: Optional[NotificationSink] = None
    instance_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def new_claim_token(self) -> str:
        """Unique per claim; prefixed with the instance for log forensics."""
        return f"{self.instance_id}:{uuid.uuid4().hex[:16]}"

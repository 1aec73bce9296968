"""Database module for the limit-order engine."""

from .models import Base, LimitOrder, Trade, User, OrderStatus, OrderType, TERMINAL_STATUSES
from .database import get_session, init_db_async, close_db_async
from .order_store import OrderStore, Settlement, FillDetails

__all__ = [
    "Base",
    "LimitOrder",
    "Trade",
    "User",
    "OrderStatus",
    "OrderType",
    "TERMINAL_STATUSES",
    "get_session",
    "init_db_async",
    "close_db_async",
    "OrderStore",
    "Settlement",
    "FillDetails",
]

"""SQLAlchemy ORM models for limit orders and the trades they produce."""

from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from limit_engine.utils.timeutil import utcnow

Base = declarative_base()


class OrderType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: str) -> "OrderType":
        """Case-insensitive parse; raises ValueError for anything else."""
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Invalid order type: {value}") from None


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    FILLED = "FILLED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OrderStatus.FILLED, OrderStatus.FAILED, OrderStatus.CANCELLED}
)


class LimitOrder(Base):
    """A standing instruction to trade once the SOL price crosses a threshold.

    Rows are never deleted; terminal rows are kept for history.
    """

    __tablename__ = "limit_orders"
    __table_args__ = (
        CheckConstraint("price_in_sol > 0", name="ck_limit_orders_price_positive"),
        CheckConstraint("amount > 0", name="ck_limit_orders_amount_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False, index=True)  # Telegram user id
    token_address = Column(String(64), nullable=False, index=True)
    token_symbol = Column(String(32), nullable=False)
    order_type = Column(String(4), nullable=False)  # "BUY" or "SELL"
    price_in_sol = Column(Float, nullable=False)  # trigger price
    amount = Column(Float, nullable=False)  # token units
    total_sol = Column(Float, nullable=False)
    current_price_in_sol = Column(Float, nullable=True)  # display cache only
    tx_signature = Column(String(128), nullable=True)
    quoted_total_sol = Column(Float, nullable=True)  # SOL leg quoted when the swap was signed
    status = Column(String(16), nullable=False, index=True, default=OrderStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    claim_token = Column(String(64), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def kind(self) -> OrderType:
        return OrderType(self.order_type)

    @property
    def is_terminal(self) -> bool:
        return self.order_status.is_terminal

    def __repr__(self) -> str:
        return (
            f"<LimitOrder(id={self.id}, {self.order_type} {self.amount} "
            f"{self.token_symbol} @ {self.price_in_sol}, status={self.status})>"
        )


class Trade(Base):
    """Immutable record of a limit order fill. One per order at most."""

    __tablename__ = "trades"
    __table_args__ = (UniqueConstraint("order_id", name="uq_trades_order_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("limit_orders.id"), nullable=False)
    user_id = Column(BigInteger, nullable=False, index=True)
    token_address = Column(String(64), nullable=False, index=True)
    token_symbol = Column(String(32), nullable=False)
    trade_type = Column(String(4), nullable=False)  # "BUY" or "SELL"
    amount = Column(Float, nullable=False)
    price_in_sol = Column(Float, nullable=False)  # realised
    total_paid = Column(Float, nullable=False)  # SOL leg of the swap
    tx_signature = Column(String(128), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Trade(id={self.id}, order_id={self.order_id}, {self.trade_type} {self.amount})>"


class User(Base):
    """Bot user with the wallet created by the bot's wallet commands.

    The engine only reads this table to find the keypair an order is signed
    with; rows are written by the bot.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(BigInteger, nullable=False, unique=True)
    username = Column(String(64), nullable=True)
    solana_address = Column(String(64), nullable=True)
    encrypted_private_key = Column(String(128), nullable=True)  # base58 keypair
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<User(telegram_id={self.telegram_id}, address={self.solana_address})>"

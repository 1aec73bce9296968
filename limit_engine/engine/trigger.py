"""Trigger evaluation: has an order's price condition fired?"""

from __future__ import annotations

from dataclasses import dataclass

from limit_engine.db.models import LimitOrder, OrderStatus, OrderType


@dataclass(frozen=True, slots=True)
class TriggerDecision:
    order_id: int
    fired: bool
    observed_price: float


def price_condition_met(order_type: str, trigger_price: float, price: float) -> bool:
    """BUY fires at or below the trigger price, SELL at or above it.

    A non-positive market or trigger price never fires.
    """
    if price <= 0 or trigger_price <= 0:
        return False
    if OrderType(order_type) is OrderType.BUY:
        return price <= trigger_price
    return price >= trigger_price


def should_trigger(order: LimitOrder, price: float) -> bool:
    """Only PENDING orders can fire; a non-positive price never fires."""
    if order.status != OrderStatus.PENDING.value:
        return False
    return price_condition_met(order.order_type, order.price_in_sol, price)


def observe(order: LimitOrder, price: float) -> TriggerDecision:
    """Record ``price`` on the order's display cache and decide firing.

    The cache refresh happens whether or not the order fires; it is never
    read back for the decision.
    """
    if price > 0:
        order.current_price_in_sol = price
    return TriggerDecision(order_id=order.id, fired=should_trigger(order, price),
                           observed_price=price)

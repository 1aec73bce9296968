from limit_engine.orders.service import LimitOrderService, parse_price_and_amount

__all__ = ["LimitOrderService", "parse_price_and_amount"]

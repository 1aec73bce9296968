"""Notification sinks for terminal order transitions."""

from .base import OrderEvent, NotificationSink, LogNotifier, notify_safely
from .telegram import TelegramNotifier

__all__ = ["OrderEvent", "NotificationSink", "LogNotifier", "notify_safely", "TelegramNotifier"]

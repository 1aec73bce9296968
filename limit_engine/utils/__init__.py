"""Utility modules for the limit engine.

Sub-modules:
- logging: configure_logging() for structlog setup
- timeutil: naive-UTC timestamp helpers shared by the store and the engine
"""

from .logging import configure_logging
from .timeutil import utcnow, seconds_ago

__all__ = [
    "configure_logging",
    "utcnow",
    "seconds_ago",
]

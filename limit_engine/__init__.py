"""Limit-order execution engine for a Solana trading bot."""

__version__ = "0.1.0"

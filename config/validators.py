"""Credential and configuration validators."""

from limit_engine.exceptions import ConfigError


def validate_swap_endpoints() -> None:
    """Raise ConfigError if the RPC or Jupiter endpoints needed to swap are missing."""
    from config.settings import settings
    if not settings.SOLANA_RPC_URL:
        raise ConfigError("SOLANA_RPC_URL is required for live execution")
    if not settings.JUPITER_QUOTE_API_URL:
        raise ConfigError("JUPITER_QUOTE_API_URL is required for live execution")


def validate_telegram() -> None:
    """Raise ConfigError if the Telegram bot token is missing."""
    from config.settings import settings
    if not settings.TELEGRAM_BOT_TOKEN:
        raise ConfigError("TELEGRAM_BOT_TOKEN is required")


def validate_engine_limits() -> None:
    """Raise ConfigError if engine timing settings are inconsistent."""
    from config.settings import settings
    if settings.MAX_RETRIES < 0:
        raise ConfigError("MAX_RETRIES must be >= 0")
    if settings.LIMIT_MAX_CONCURRENT_EXECUTIONS < 1:
        raise ConfigError("LIMIT_MAX_CONCURRENT_EXECUTIONS must be >= 1")
    bounded = settings.SWAP_TIMEOUT_SECONDS + settings.CONFIRMATION_TIMEOUT_SECONDS
    if settings.STALE_EXECUTING_SECONDS <= bounded:
        raise ConfigError(
            "STALE_EXECUTING_SECONDS must exceed SWAP_TIMEOUT_SECONDS + "
            "CONFIRMATION_TIMEOUT_SECONDS"
        )

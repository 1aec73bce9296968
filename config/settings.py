"""Runtime configuration loaded from environment / .env."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # === Logging ===
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # === Telegram ===
    TELEGRAM_BOT_TOKEN: str = ""

    # === Database ===
    DATABASE_URL: str = "sqlite+aiosqlite:///data/limit_orders.db"

    # === Solana ===
    SOLANA_RPC_URL: str = "https://api.mainnet-beta.solana.com"
    SOL_MINT: str = "So11111111111111111111111111111111111111112"
    SOL_DECIMALS: int = 9
    EXPLORER_TX_URL: str = "https://explorer.solana.com/tx/{signature}"

    # === Jupiter ===
    JUPITER_QUOTE_API_URL: str = "https://quote-api.jup.ag/v6"
    JUPITER_PRICE_API_URL: str = "https://lite-api.jup.ag/price/v2"

    # === Limit order engine ===
    LIMIT_POLL_INTERVAL_SECONDS: float = 30.0
    LIMIT_MAX_CONCURRENT_EXECUTIONS: int = 4
    PRICE_REQUEST_SPACING_SECONDS: float = 0.2
    MAX_RETRIES: int = 5
    RETRY_BACKOFF_SECONDS: float = 30.0
    DEFAULT_SLIPPAGE_BPS: int = 50  # 0.5%

    # Timeouts for the three external calls
    PRICE_TIMEOUT_SECONDS: float = 10.0
    MAX_QUOTE_AGE_SECONDS: float = 60.0  # older trigger decisions are re-queued
    SWAP_TIMEOUT_SECONDS: float = 30.0
    CONFIRMATION_TIMEOUT_SECONDS: float = 60.0
    CONFIRMATION_POLL_SECONDS: float = 2.0

    # === Reconciliation ===
    RECONCILE_INTERVAL_SECONDS: float = 120.0
    STALE_EXECUTING_SECONDS: float = 300.0  # must exceed swap + confirmation timeouts
    NOT_FOUND_GRACE_SECONDS: float = 900.0

    model_config = {"env_file": ".env"}


settings = Settings()

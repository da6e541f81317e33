"""
Configuration Manager
=====================
Single source of truth for every tunable in the copy-trading service.

How it works:
- On startup, the .env file in the project root is loaded
- Each setting has a default so the service starts in simulated mode
  with no secrets at all
- Anything can be overridden through the environment
- One Settings object is created and passed to every component
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


load_dotenv(Path(__file__).parent.parent / ".env")


def _get_env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.getenv(key, default)


def _get_env_float(key: str, default: float) -> float:
    """Get an environment variable as a float number."""
    val = os.getenv(key)
    return float(val) if val else default


def _get_env_int(key: str, default: int) -> int:
    """Get an environment variable as a whole number."""
    val = os.getenv(key)
    return int(val) if val else default


def _get_env_list(key: str, default: list[str]) -> list[str]:
    """Get a comma-separated environment variable as a list."""
    val = os.getenv(key)
    if not val:
        return list(default)
    return [item.strip() for item in val.split(",") if item.strip()]


DEFAULT_RPC_URLS = [
    "https://api.mainnet-beta.solana.com",
    "https://solana-mainnet.g.alchemy.com/v2/demo",
    "https://rpc.ankr.com/solana",
]


@dataclass
class Settings:
    """
    All service configuration in one place.

    Sections:
    - Endpoints & keys: RPC, Jupiter, price/metadata feeds, Telegram
    - Trading: slippage, default thresholds, execution mode
    - Scanning: batch sizes, retry policy, classifier tuning
    - System: database path, logging, cache TTL
    """

    # =========================================================================
    # Endpoints & Keys
    # =========================================================================

    # Signer key for mirrored and automated trades (base58). NEVER log this.
    copy_trade_private_key: str = field(default_factory=lambda: _get_env("COPY_TRADE_PRIVATE_KEY"))

    # Optional Helius key; when set its RPC URL is tried first
    helius_api_key: str = field(default_factory=lambda: _get_env("HELIUS_API_KEY"))

    # Ordered RPC endpoints, tried one after another on every call
    rpc_urls: list[str] = field(default_factory=lambda: _get_env_list("RPC_URLS", DEFAULT_RPC_URLS))

    # Every external HTTP call carries this timeout
    http_timeout_seconds: float = field(
        default_factory=lambda: _get_env_float("HTTP_TIMEOUT_SECONDS", 10.0)
    )

    jupiter_base_url: str = "https://quote-api.jup.ag/v6"
    jupiter_price_url: str = "https://api.jup.ag/price/v2"
    jupiter_token_list_url: str = "https://token.jup.ag/strict"
    dexscreener_base_url: str = "https://api.dexscreener.com"

    telegram_bot_token: str = field(default_factory=lambda: _get_env("TELEGRAM_BOT_TOKEN"))
    telegram_chat_id: str = field(default_factory=lambda: _get_env("TELEGRAM_CHAT_ID"))

    # =========================================================================
    # Trading Parameters
    # =========================================================================

    # "live" = quote, sign and submit through Jupiter
    # "simulated" = fabricate quotes from prices; every row is labeled simulated
    trading_mode: str = field(default_factory=lambda: _get_env("TRADING_MODE", "simulated"))

    # Manual buys without an explicit size spend this much SOL
    default_buy_amount_sol: float = field(
        default_factory=lambda: _get_env_float("DEFAULT_BUY_AMOUNT_SOL", 0.1)
    )

    # Slippage for user-initiated and mirrored trades (percent)
    default_slippage_percent: float = field(
        default_factory=lambda: _get_env_float("DEFAULT_SLIPPAGE_PERCENT", 12.0)
    )

    # Automated stop-loss/take-profit exits use a wider tolerance
    auto_exit_slippage_percent: float = field(
        default_factory=lambda: _get_env_float("AUTO_EXIT_SLIPPAGE_PERCENT", 15.0)
    )

    # Thresholds applied when a position is opened without explicit values
    default_stop_loss_percent: float = field(
        default_factory=lambda: _get_env_float("DEFAULT_STOP_LOSS_PERCENT", 10.0)
    )
    default_take_profit_percent: float = field(
        default_factory=lambda: _get_env_float("DEFAULT_TAKE_PROFIT_PERCENT", 50.0)
    )

    # Reference SOL price used only by the simulated executor
    simulated_sol_price_usd: float = 250.0

    # Decimals assumed for a mint when the chain lookup fails
    default_token_decimals: int = 6

    # Priority fee passed to Jupiter when building swap transactions
    priority_fee_lamports: str | int = "auto"

    # Quote retries are linear: step * attempt between tries
    quote_retry_attempts: int = 2
    quote_retry_step_seconds: float = 0.5

    # =========================================================================
    # Scanning & Classification
    # =========================================================================

    scan_signature_limit: int = field(
        default_factory=lambda: _get_env_int("SCAN_SIGNATURE_LIMIT", 100)
    )

    # Bounded fan-out when fetching transactions
    scan_batch_size: int = 10
    scan_batch_delay_seconds: float = 0.1

    # Scan retries are exponential: 1s, 2s, 4s
    scan_retry_attempts: int = 3
    scan_retry_base_seconds: float = 1.0

    # Token balance changes below this are noise
    dust_epsilon: float = 0.0001

    # What to do when more than one non-SOL mint moved in a transaction:
    # "reject" = not a swap we understand; "first" = use the first changed mint
    multi_leg_policy: str = field(default_factory=lambda: _get_env("MULTI_LEG_POLICY", "reject"))

    # Tokens not seen for this long drop out of the presence tracker
    presence_grace_seconds: float = 300.0

    # =========================================================================
    # Loops
    # =========================================================================

    position_check_interval: int = field(
        default_factory=lambda: _get_env_int("POSITION_CHECK_INTERVAL", 30)
    )
    wallet_poll_interval: int = field(
        default_factory=lambda: _get_env_int("WALLET_POLL_INTERVAL", 30)
    )

    # Copy trades left "executing" longer than this are reported as stuck
    stuck_executing_seconds: int = 600

    # =========================================================================
    # System
    # =========================================================================

    db_path: str = field(
        default_factory=lambda: _get_env(
            "DB_PATH", str(Path(__file__).parent.parent / "data" / "copytrade.db")
        )
    )

    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))

    # One JSON object per log line instead of the console format
    log_json: bool = field(default_factory=lambda: _get_env("LOG_JSON", "").lower() in ("1", "true", "yes"))

    # How long token symbols stay cached (seconds)
    api_cache_ttl: int = 3600

    @property
    def rpc_endpoints(self) -> list[str]:
        """Ordered endpoint list, Helius first when a key is configured."""
        endpoints = list(self.rpc_urls)
        if self.helius_api_key:
            endpoints.insert(0, f"https://mainnet.helius-rpc.com/?api-key={self.helius_api_key}")
        return endpoints

    @property
    def is_live(self) -> bool:
        return self.trading_mode == "live"

    def validate(self) -> list[str]:
        """
        Check that the settings make sense.
        Returns a list of problems found (empty list = all good).
        """
        problems = []

        if self.trading_mode not in ("live", "simulated"):
            problems.append(f"TRADING_MODE must be 'live' or 'simulated', got '{self.trading_mode}'")
        if self.is_live and not self.copy_trade_private_key:
            problems.append("COPY_TRADE_PRIVATE_KEY is not set, needed for live trading")
        if not self.rpc_endpoints:
            problems.append("RPC_URLS is empty, at least one endpoint is required")
        if not self.telegram_bot_token or not self.telegram_chat_id:
            problems.append("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID not set, notifications disabled")
        if self.multi_leg_policy not in ("reject", "first"):
            problems.append(f"MULTI_LEG_POLICY must be 'reject' or 'first', got '{self.multi_leg_policy}'")
        if self.scan_batch_size <= 0:
            problems.append("scan_batch_size must be positive")

        return problems


# Usage: from config.settings import settings
settings = Settings()

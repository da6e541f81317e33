"""
Telegram Notifier
=================
Pushes trade alerts to a Telegram chat.

One entry point, notify(event_type, payload) -> bool, with these events:
- copy_trade_success: a followed wallet's trade was mirrored
- copy_trade_failed: mirroring was attempted and failed
- stop_loss / take_profit: the position monitor fired an automatic exit
- trade: a manual buy or sell went through

Delivery is fire-and-forget. notify() never raises; it returns False when
notifications are disabled or Telegram refused the message, and callers
carry on either way.
"""

from typing import Any, Callable

import telegram
from telegram.error import TelegramError

from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)

SOLSCAN_TX_URL = "https://solscan.io/tx/"
SOLSCAN_TOKEN_URL = "https://solscan.io/token/"


def _short_address(address: str | None) -> str:
    if not address:
        return "unknown"
    return address[:6] + "..." + address[-4:] if len(address) > 10 else address


def _action(payload: dict) -> str:
    return "BUY" if payload.get("action") == "buy" else "SELL"


def _tx_link(payload: dict) -> str:
    tx = payload.get("tx_signature") or ""
    if not tx:
        return ""
    if tx.startswith("sim_"):
        return f"\nTx: {tx} (simulated)"
    return f"\n{SOLSCAN_TX_URL}{tx}"


def format_copy_trade_success(payload: dict) -> str:
    return (
        f"COPY TRADE EXECUTED\n"
        f"{'='*20}\n\n"
        f"{_action(payload)} copied\n"
        f"Token: {payload.get('token_symbol') or _short_address(payload.get('token_mint'))}\n"
        f"Executed: {payload.get('executed_amount_sol', 0):.4f} SOL\n"
        f"Source amount: {payload.get('source_amount_sol', 0):.4f} SOL\n"
        f"DEX: {payload.get('platform') or 'jupiter'}\n"
        f"Copied from: {_short_address(payload.get('source_wallet'))}\n"
        f"{_tx_link(payload)}"
    ).rstrip()


def format_copy_trade_failed(payload: dict) -> str:
    return (
        f"COPY TRADE FAILED\n"
        f"{'='*20}\n\n"
        f"{_action(payload)} not executed\n"
        f"Token: {payload.get('token_symbol') or _short_address(payload.get('token_mint'))}\n"
        f"Attempted: {payload.get('executed_amount_sol', 0):.4f} SOL\n"
        f"DEX: {payload.get('platform') or 'jupiter'}\n"
        f"Error: {payload.get('error_message') or 'unknown error'}\n"
        f"Copied from: {_short_address(payload.get('source_wallet'))}"
    )


def _format_exit(title: str, payload: dict) -> str:
    msg = (
        f"{title}\n"
        f"{'='*20}\n\n"
        f"Token: {payload.get('token_symbol') or _short_address(payload.get('token_mint'))}\n"
        f"Change: {payload.get('pnl_percent', 0):+.2f}%\n"
        f"Threshold: {payload.get('threshold', 0)}%\n"
        f"Entry: ${payload.get('entry_price', 0):.8f}\n"
        f"Price: ${payload.get('current_price', 0):.8f}\n"
    )
    if payload.get("error_message"):
        msg += f"Exit FAILED: {payload['error_message']}\n"
    elif payload.get("realized_pnl") is not None:
        msg += f"Realized PnL: ${payload['realized_pnl']:+.2f}\n"
    msg += f"\n{SOLSCAN_TOKEN_URL}{payload.get('token_mint', '')}"
    return msg


def format_stop_loss(payload: dict) -> str:
    return _format_exit("STOP LOSS TRIGGERED", payload)


def format_take_profit(payload: dict) -> str:
    return _format_exit("TAKE PROFIT HIT", payload)


def format_trade(payload: dict) -> str:
    return (
        f"{_action(payload)} EXECUTED\n"
        f"{'='*20}\n\n"
        f"Token: {payload.get('token_symbol') or _short_address(payload.get('token_mint'))}\n"
        f"Amount: {payload.get('amount_sol', 0):.4f} SOL\n"
        f"Tokens: {payload.get('amount_token', 0):,.4f}\n"
        f"Price: ${payload.get('price_usd') or 0:.8f}\n"
        f"{_tx_link(payload)}"
    ).rstrip()


FORMATTERS: dict[str, Callable[[dict], str]] = {
    "copy_trade_success": format_copy_trade_success,
    "copy_trade_failed": format_copy_trade_failed,
    "stop_loss": format_stop_loss,
    "take_profit": format_take_profit,
    "trade": format_trade,
}


class TelegramNotifier:
    """
    Sends trade alerts to your Telegram chat.

    Usage:
        notifier = TelegramNotifier(settings)
        await notifier.initialize()
        await notifier.notify("trade", {...})
    """

    def __init__(self, settings: Settings, bot: Any | None = None):
        self.settings = settings
        self.bot = bot
        self.chat_id: int | None = None
        self.enabled: bool = False

    async def initialize(self) -> None:
        """Set up the Telegram bot for sending messages."""
        if not self.settings.telegram_bot_token or not self.settings.telegram_chat_id:
            logger.info("notifier_disabled", note="Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID")
            return

        try:
            self.chat_id = int(self.settings.telegram_chat_id)
        except ValueError:
            logger.error("notifier_bad_chat_id", value=self.settings.telegram_chat_id)
            return

        if self.bot is None:
            self.bot = telegram.Bot(token=self.settings.telegram_bot_token)
        self.enabled = True
        logger.info("telegram_notifier_initialized")

    async def _send(self, text: str) -> bool:
        if not self.enabled or not self.bot:
            return False

        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text)
        except TelegramError as e:
            logger.error("telegram_send_failed", error=str(e))
            return False
        return True

    async def notify(self, event_type: str, payload: dict) -> bool:
        """Render and send one event. True if Telegram accepted it."""
        formatter = FORMATTERS.get(event_type)
        if formatter is None:
            logger.warning("unknown_notification_type", event_type=event_type)
            return False

        try:
            text = formatter(payload)
        except (TypeError, ValueError, KeyError) as e:
            logger.error("notification_format_failed", event_type=event_type, error=str(e))
            return False

        sent = await self._send(text)
        logger.debug("notification", event_type=event_type, sent=sent)
        return sent

    async def notify_startup(self) -> bool:
        """Send a message when the service starts up."""
        msg = (
            f"Copy trader started\n"
            f"{'='*20}\n\n"
            f"Mode: {self.settings.trading_mode.upper()}\n"
            f"Default SL/TP: -{self.settings.default_stop_loss_percent}% / "
            f"+{self.settings.default_take_profit_percent}%\n"
            f"Auto-exit slippage: {self.settings.auto_exit_slippage_percent}%"
        )
        return await self._send(msg)

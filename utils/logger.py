"""
Logging Setup
=============
Structured logging for every component of the copy-trading service.

Each log line is an event name plus keyword context, e.g.
    logger.info("swap_classified", wallet="9xQe...", type="buy")

Levels:
- DEBUG: per-transaction detail, endpoint fallbacks
- INFO: scans, trades, position transitions
- WARNING: triggers, degraded upstreams, rejected dispatches
- ERROR: execution failures, exhausted endpoints

Set LOG_JSON=1 to emit one JSON object per line instead of the console
format, for shipping logs to a collector.
"""

import sys
import logging
from pathlib import Path

import structlog


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, json_logs: bool = False) -> None:
    """
    Configure stdlib logging and structlog for the whole process.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_dir: Optional directory that also receives copytrade.log
        json_logs: Render events as JSON lines
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "copytrade.log"))
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty() and not log_dir)

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso" if json_logs else "%Y-%m-%d %H:%M:%S"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(module_name: str) -> structlog.stdlib.BoundLogger:
    """
    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return structlog.get_logger(module_name)


def short(value: str | None, head: int = 8) -> str:
    """Abbreviate an address or signature for log output."""
    if not value:
        return ""
    return value[:head] + "..." if len(value) > head else value

import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Dict

from .config import Settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_CONSOLE_HANDLER = "btc_prices.console"
_FILE_HANDLER = "btc_prices.file"

# One log file per process start: logs/prices-<UTC start>.log
_STARTED_AT = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def log_file_path(settings: Settings) -> str:
    return os.path.join(settings.log_dir, f"prices-{_STARTED_AT}.log")


def _named_handlers(root: logging.Logger) -> Dict[str, logging.Handler]:
    return {h.get_name(): h for h in root.handlers if h.get_name()}


def configure_logging(settings: Settings) -> None:
    """Attach the service's console and rotating-file handlers to the root logger.

    Safe to call repeatedly: handlers are recognised by name and only
    re-formatted, never duplicated.
    """
    root = logging.getLogger()
    root.setLevel(settings.log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    existing = _named_handlers(root)

    console = existing.get(_CONSOLE_HANDLER)
    if console is None:
        console = logging.StreamHandler()
        console.set_name(_CONSOLE_HANDLER)
        root.addHandler(console)
    console.setFormatter(formatter)

    if _FILE_HANDLER not in existing:
        os.makedirs(settings.log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file_path(settings),
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.set_name(_FILE_HANDLER)
        root.addHandler(file_handler)
        existing[_FILE_HANDLER] = file_handler
    existing[_FILE_HANDLER].setFormatter(formatter)

    for name in ("aiohttp.client", "aiohttp.access", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)

import logging
import math
import os
from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from dotenv import find_dotenv, load_dotenv

# Load the closest .env without overriding existing environment
load_dotenv(find_dotenv(usecwd=True), override=False)

_DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs")


@dataclass(frozen=True)
class Settings:
    cache_ttl_seconds: int
    coingecko_base_url: str
    coingecko_api_key: str
    coingecko_api_key_header: str
    coingecko_skippable_statuses: FrozenSet[int]
    coinbase_base_url: str
    coinbase_user_agent: str
    historical_window_days: int
    upstream_timeout_seconds: float
    stale_while_revalidate_seconds: int
    error_cache_seconds: int
    error_stale_while_revalidate_seconds: int
    allowed_origins: List[str]
    host: str
    port: int
    verbose_logs: bool
    log_level: int
    log_dir: str
    log_max_bytes: int
    log_backup_count: int


def _get(env_key: str, default: str = "") -> str:
    return os.environ.get(env_key, default) or default


def _get_int(env_key: str, default: int, *, minimum: int = 0) -> int:
    raw = _get(env_key, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{env_key} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{env_key} must be >= {minimum}, got {value}")
    return value


def _get_float(env_key: str, default: float) -> float:
    raw = _get(env_key, str(default)).strip()
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{env_key} must be a number, got {raw!r}") from exc
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{env_key} must be a positive finite number, got {value}")
    return value


def _get_bool(env_key: str, default: bool = False) -> bool:
    raw = _get(env_key, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _get_statuses(env_key: str, default: str) -> FrozenSet[int]:
    # Set-but-empty means "no tolerated statuses", unlike the other settings
    raw = os.environ.get(env_key)
    if raw is None:
        raw = default
    statuses = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            statuses.add(int(part))
        except ValueError as exc:
            raise ValueError(f"{env_key} must list HTTP status codes, got {part!r}") from exc
    return frozenset(statuses)


def _get_log_level(env_key: str, default: str = "INFO") -> int:
    raw = _get(env_key, default).strip().upper()
    level = logging.getLevelName(raw)
    if not isinstance(level, int):
        raise ValueError(f"{env_key} must be a logging level name, got {raw!r}")
    return level


def load_settings() -> Settings:
    return Settings(
        cache_ttl_seconds=_get_int("BTC_PRICE_CACHE_TTL_SECONDS", 900),
        coingecko_base_url=_get("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3").rstrip("/"),
        coingecko_api_key=_get("COINGECKO_API_KEY").strip(),
        coingecko_api_key_header=_get("COINGECKO_API_KEY_HEADER", "x-cg-demo-api-key"),
        # 429 is deliberately not skippable by default; opt in via env
        coingecko_skippable_statuses=_get_statuses("COINGECKO_SKIPPABLE_STATUSES", "401"),
        coinbase_base_url=_get("COINBASE_BASE_URL", "https://api.exchange.coinbase.com").rstrip("/"),
        coinbase_user_agent=_get("COINBASE_USER_AGENT", "mining-calculator"),
        historical_window_days=_get_int("HISTORICAL_WINDOW_DAYS", 14, minimum=1),
        upstream_timeout_seconds=_get_float("UPSTREAM_TIMEOUT_SECONDS", 30.0),
        stale_while_revalidate_seconds=_get_int("STALE_WHILE_REVALIDATE_SECONDS", 86400),
        error_cache_seconds=_get_int("ERROR_CACHE_SECONDS", 30),
        error_stale_while_revalidate_seconds=_get_int("ERROR_STALE_WHILE_REVALIDATE_SECONDS", 300),
        allowed_origins=[o.strip() for o in _get("ALLOWED_ORIGINS").split(",") if o.strip()],
        host=_get("HOST", "127.0.0.1"),
        port=_get_int("PORT", 8000, minimum=1),
        verbose_logs=_get_bool("PRICE_VERBOSE_LOGS"),
        log_level=_get_log_level("LOG_LEVEL"),
        log_dir=_get("LOG_DIR", _DEFAULT_LOG_DIR),
        log_max_bytes=_get_int("LOG_MAX_BYTES", 10 * 1024 * 1024, minimum=1),
        log_backup_count=_get_int("LOG_BACKUP_COUNT", 5),
    )


# Singleton style accessor to avoid repeated env parsing
_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings`` re-reads the environment."""
    global _SETTINGS
    _SETTINGS = None

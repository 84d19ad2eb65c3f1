import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Per-request events that would flood the log at normal traffic
_NOISY_EVENTS = {
    "price_cache_hit",
    "price_refresh_joined",
}

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = bool(enabled)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _event_emoji(event: str) -> str:
    mapping = {
        "price_cache_hit": "📦",
        "price_refresh_start": "🔄",
        "price_refresh_joined": "🔗",
        "price_refresh_done": "✅",
        "price_refresh_failed": "❌",
        "historical_provider_skipped": "⏭️",
        "historical_provider_empty": "💤",
        "upstream_request_failed": "🌐",
    }
    return mapping.get(event, "🔔")


def _format_human(payload: Dict[str, Any]) -> str:
    # "🔔 event | k1: v1 | k2: v2"
    event = str(payload.get("event", "event"))
    icon = _event_emoji(event)
    exclude_keys = {"event", "ts", "service"}
    parts = []
    for key in sorted(payload.keys()):
        if key in exclude_keys:
            continue
        value = payload[key]
        if isinstance(value, (dict, list)):
            value_str = "…"
        else:
            value_str = str(value)
        parts.append(f"{key}: {value_str}")
    kv = " | ".join(parts)
    return f"{icon} {event}{(' | ' + kv) if kv else ''}"


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    if event in _NOISY_EVENTS and not _verbose:
        return
    if not logger.isEnabledFor(level):
        return

    payload: Dict[str, Any] = {"event": event, "ts": _now_iso(), **fields}
    payload.setdefault("service", logger.name)
    logger.log(level, _format_human(payload))


def log_info(logger: logging.Logger, event: str, **fields: Any) -> None:
    log_event(logger, logging.INFO, event, **fields)


def log_warning(logger: logging.Logger, event: str, **fields: Any) -> None:
    log_event(logger, logging.WARNING, event, **fields)


def log_error(logger: logging.Logger, event: str, **fields: Any) -> None:
    log_event(logger, logging.ERROR, event, **fields)

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .concurrency import SingleFlight
from .event_logging import log_error, log_info
from .models import CacheEntry, CacheLookup, CacheStatus, PricePayload
from .providers import UpstreamError
from .upstream import Clock, utc_now

logger = logging.getLogger("obs.prices")


class PriceCacheService:
    """In-memory cache for the (current, historical) BTC price pair.

    - One ``CacheEntry`` at most, replaced by reference swap so readers never
      see a half-written entry.
    - A miss refreshes through ``fetch``; concurrent misses share one refresh
      via ``SingleFlight`` and all observe its result or its ``UpstreamError``.
    - A failed refresh keeps the previous entry, which is never served once
      expired.
    """

    _REFRESH_KEY = "btc_prices"

    def __init__(
        self,
        fetch: Callable[[], Awaitable[PricePayload]],
        *,
        ttl_seconds: int = 900,
        clock: Clock = utc_now,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._fetch = fetch
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._flight = SingleFlight()

    @property
    def cache_entry(self) -> Optional[CacheEntry]:
        return self._entry

    @property
    def refresh_in_flight(self) -> bool:
        return self._flight.in_flight(self._REFRESH_KEY)

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _fresh_entry(self, now_ms: int) -> Optional[CacheEntry]:
        entry = self._entry
        if entry is not None and now_ms - entry.cached_at_ms < self.ttl_seconds * 1000:
            return entry
        return None

    async def lookup(self) -> CacheLookup:
        """Return the cached payload (``HIT``) or the result of a refresh (``MISS``)."""
        entry = self._fresh_entry(self._now_ms())
        if entry is not None:
            log_info(logger, "price_cache_hit", age_ms=self._now_ms() - entry.cached_at_ms)
            return CacheLookup(payload=entry.payload, status=CacheStatus.HIT)

        payload = await self._flight.do(
            self._REFRESH_KEY,
            self._refresh,
            on_join=lambda: log_info(logger, "price_refresh_joined"),
        )
        return CacheLookup(payload=payload, status=CacheStatus.MISS)

    async def get_prices(self) -> PricePayload:
        return (await self.lookup()).payload

    async def _refresh(self) -> PricePayload:
        started = time.monotonic()
        log_info(logger, "price_refresh_start", ttl_s=self.ttl_seconds)
        try:
            payload = await self._fetch()
        except UpstreamError as exc:
            log_error(
                logger,
                "price_refresh_failed",
                error=str(exc),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise

        self._entry = CacheEntry(payload=payload, cached_at_ms=self._now_ms())
        log_info(
            logger,
            "price_refresh_done",
            current_usd=payload.current_price_usd,
            historical_usd=payload.historical_price_usd,
            target=payload.historical_target_date,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return payload

    def snapshot(self) -> Dict[str, Any]:
        """Cache state for health reporting; never triggers a refresh."""
        entry = self._entry
        now_ms = self._now_ms()
        return {
            "cached": entry is not None,
            "fresh": self._fresh_entry(now_ms) is not None,
            "age_ms": (now_ms - entry.cached_at_ms) if entry is not None else None,
            "ttl_s": self.ttl_seconds,
            "refresh_in_flight": self.refresh_in_flight,
        }

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, FrozenSet, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import aiohttp
import orjson

from .event_logging import log_info, log_warning

logger = logging.getLogger("obs.prices")


class UpstreamError(RuntimeError):
    """Raised when an upstream price API fails or returns an unusable payload."""


class ProviderSkipped(Exception):
    """Raised by a provider whose failure is tolerated; the chain moves on."""

    def __init__(self, provider: str, status: int, reason: str = "") -> None:
        super().__init__(f"{provider} skipped: {status} {reason}".strip())
        self.provider = provider
        self.status = status
        self.reason = reason


class UpstreamResponse(NamedTuple):
    status: int
    reason: str
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def iso_utc(dt: datetime) -> str:
    """Serialize an aware datetime as UTC with millisecond precision and a ``Z`` suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def pick_closest(points: Iterable[Any], target: float, *, value_index: int = 1) -> Optional[float]:
    """Return the value of the point whose timestamp (index 0) is closest to ``target``.

    Points that are not sequences long enough to hold ``value_index`` or that
    carry non-numeric timestamp/value are skipped. On exact ties the first
    point encountered wins.
    """
    closest: Optional[float] = None
    closest_diff = math.inf
    for point in points:
        if not isinstance(point, (list, tuple)) or len(point) <= value_index:
            continue
        ts, value = point[0], point[value_index]
        if not is_number(ts) or not is_number(value):
            continue
        diff = abs(ts - target)
        if diff < closest_diff:
            closest_diff = diff
            closest = value
    return closest


async def get_json(
    session: aiohttp.ClientSession,
    url: str,
    *,
    label: str,
    params: Optional[Mapping[str, str]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> UpstreamResponse:
    """GET ``url`` and decode the body when the status is 2xx.

    Transport failures and undecodable bodies are raised as ``UpstreamError``;
    non-2xx statuses are returned to the caller undecoded.
    """
    try:
        async with session.get(url, params=params, headers=headers) as resp:
            status = int(resp.status)
            reason = resp.reason or ""
            if not 200 <= status < 300:
                return UpstreamResponse(status, reason, None)
            body = await resp.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        log_warning(logger, "upstream_request_failed", source=label, error=repr(exc))
        raise UpstreamError(f"{label} request failed: {exc!r}") from exc

    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError as exc:
        raise UpstreamError(f"Invalid JSON payload from {label}") from exc
    return UpstreamResponse(status, reason, data)


class HistoricalPriceProvider:
    """A source for the BTC/USD price near a past instant."""

    name = "provider"

    async def fetch(
        self, session: aiohttp.ClientSession, target: datetime, window: timedelta
    ) -> Optional[float]:
        """Return a positive price, ``None`` when the source has no data, or raise.

        Raise ``ProviderSkipped`` for tolerated failures and ``UpstreamError``
        for fatal ones.
        """
        raise NotImplementedError


class CoinGeckoHistoricalProvider(HistoricalPriceProvider):
    """``/coins/bitcoin/market_chart/range`` lookup; requires an API key."""

    name = "coingecko"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        api_key_header: str = "x-cg-demo-api-key",
        skippable_statuses: FrozenSet[int] = frozenset({401}),
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.skippable_statuses = frozenset(skippable_statuses)

    async def fetch(
        self, session: aiohttp.ClientSession, target: datetime, window: timedelta
    ) -> Optional[float]:
        target_sec = int(target.timestamp())
        params = {
            "vs_currency": "usd",
            "from": str(target_sec),
            "to": str(target_sec + int(window.total_seconds())),
        }
        resp = await get_json(
            session,
            f"{self.base_url}/coins/bitcoin/market_chart/range",
            label="CoinGecko historical price",
            params=params,
            headers={self.api_key_header: self.api_key},
        )
        if resp.status in self.skippable_statuses:
            raise ProviderSkipped(self.name, resp.status, resp.reason)
        if not resp.ok:
            raise UpstreamError(f"CoinGecko historical price error: {resp.status} {resp.reason}".rstrip())

        prices = resp.data.get("prices") if isinstance(resp.data, dict) else None
        if not isinstance(prices, list) or not prices:
            return None
        price = pick_closest(prices, target.timestamp() * 1000, value_index=1)
        if price is None or price <= 0:
            return None
        return float(price)


class CoinbaseCandleProvider(HistoricalPriceProvider):
    """Public daily candles for BTC-USD; keyless, used as the last resort."""

    name = "coinbase"
    granularity_seconds = 86400

    def __init__(self, base_url: str = "https://api.exchange.coinbase.com", *, user_agent: str = "mining-calculator") -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent

    async def fetch(
        self, session: aiohttp.ClientSession, target: datetime, window: timedelta
    ) -> Optional[float]:
        params = {
            "granularity": str(self.granularity_seconds),
            "start": iso_utc(target),
            "end": iso_utc(target + window),
        }
        resp = await get_json(
            session,
            f"{self.base_url}/products/BTC-USD/candles",
            label="Coinbase candles",
            params=params,
            headers={"User-Agent": self.user_agent},
        )
        if not resp.ok:
            raise UpstreamError(f"Coinbase candles error: {resp.status} {resp.reason}".rstrip())

        candles = resp.data
        if not isinstance(candles, list) or not candles:
            raise UpstreamError("No candles returned from Coinbase for historical price")

        # [time, low, high, open, close, volume]
        close = pick_closest(candles, math.floor(target.timestamp()), value_index=4)
        if close is None or close <= 0:
            raise UpstreamError("Unable to determine historical price from Coinbase candles payload")
        return float(close)


class ProviderChain:
    """Try historical providers in order and return the first price found."""

    def __init__(self, providers: Sequence[HistoricalPriceProvider]) -> None:
        self.providers: List[HistoricalPriceProvider] = list(providers)

    async def resolve(
        self, session: aiohttp.ClientSession, target: datetime, window: timedelta
    ) -> Tuple[float, str]:
        """Return ``(price, provider_name)``; ``UpstreamError`` aborts the chain."""
        for provider in self.providers:
            try:
                price = await provider.fetch(session, target, window)
            except ProviderSkipped as exc:
                log_info(
                    logger,
                    "historical_provider_skipped",
                    provider=provider.name,
                    status=exc.status,
                )
                continue
            if price is not None:
                return price, provider.name
            log_info(logger, "historical_provider_empty", provider=provider.name)

        tried = ", ".join(p.name for p in self.providers) or "none"
        raise UpstreamError(f"Unable to determine historical price (tried: {tried})")

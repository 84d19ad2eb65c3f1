"""Upstream fetch pipeline: current BTC/USD price plus the price two years ago."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import aiohttp

from .config import Settings
from .models import PricePayload
from .providers import (
    CoinbaseCandleProvider,
    CoinGeckoHistoricalProvider,
    HistoricalPriceProvider,
    ProviderChain,
    UpstreamError,
    get_json,
    is_number,
    iso_utc,
)

logger = logging.getLogger("obs.prices")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def two_years_before(now: datetime) -> datetime:
    """Same wall-clock instant two calendar years earlier.

    29 February rolls over to 1 March when the target year is not a leap year.
    """
    try:
        return now.replace(year=now.year - 2)
    except ValueError:
        return now.replace(year=now.year - 2, month=3, day=1)


def round_usd(value: float) -> int:
    # Half-up; floor(value + 0.5) would round 0.49999999999999994 up to 1
    whole = math.floor(value)
    return int(whole) + (1 if value - whole >= 0.5 else 0)


class PriceFetcher:
    """Runs one upstream pipeline per ``fetch()`` call; holds no cache of its own."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        coingecko_base_url: str = "https://api.coingecko.com/api/v3",
        coingecko_api_key: str = "",
        coingecko_api_key_header: str = "x-cg-demo-api-key",
        historical_providers: Optional[List[HistoricalPriceProvider]] = None,
        window_days: int = 14,
        clock: Clock = utc_now,
    ) -> None:
        self.session = session
        self.coingecko_base_url = coingecko_base_url.rstrip("/")
        self.coingecko_api_key = coingecko_api_key
        self.coingecko_api_key_header = coingecko_api_key_header
        self.window = timedelta(days=window_days)
        self.clock = clock
        if historical_providers is None:
            historical_providers = [CoinbaseCandleProvider()]
        self.chain = ProviderChain(historical_providers)

    @classmethod
    def from_settings(
        cls, session: aiohttp.ClientSession, settings: Settings, *, clock: Clock = utc_now
    ) -> "PriceFetcher":
        providers: List[HistoricalPriceProvider] = []
        # Keyless CoinGecko returns 401 for /coins/*, so only try it with a key
        if settings.coingecko_api_key:
            providers.append(
                CoinGeckoHistoricalProvider(
                    settings.coingecko_base_url,
                    settings.coingecko_api_key,
                    api_key_header=settings.coingecko_api_key_header,
                    skippable_statuses=settings.coingecko_skippable_statuses,
                )
            )
        providers.append(
            CoinbaseCandleProvider(settings.coinbase_base_url, user_agent=settings.coinbase_user_agent)
        )
        return cls(
            session,
            coingecko_base_url=settings.coingecko_base_url,
            coingecko_api_key=settings.coingecko_api_key,
            coingecko_api_key_header=settings.coingecko_api_key_header,
            historical_providers=providers,
            window_days=settings.historical_window_days,
            clock=clock,
        )

    def _coingecko_headers(self) -> Dict[str, str]:
        if self.coingecko_api_key:
            return {self.coingecko_api_key_header: self.coingecko_api_key}
        return {}

    async def fetch_current_price(self) -> float:
        resp = await get_json(
            self.session,
            f"{self.coingecko_base_url}/simple/price",
            label="CoinGecko current price",
            params={"ids": "bitcoin", "vs_currencies": "usd"},
            headers=self._coingecko_headers(),
        )
        if not resp.ok:
            raise UpstreamError(f"CoinGecko current price error: {resp.status} {resp.reason}".rstrip())

        data = resp.data
        price = None
        if isinstance(data, dict) and isinstance(data.get("bitcoin"), dict):
            price = data["bitcoin"].get("usd")
        if not is_number(price) or price <= 0:
            raise UpstreamError("Invalid current price payload from CoinGecko")
        return float(price)

    async def fetch(self) -> PricePayload:
        current_price = await self.fetch_current_price()

        target = two_years_before(self.clock())
        historical_price, source = await self.chain.resolve(self.session, target, self.window)

        current_usd = round_usd(current_price)
        historical_usd = round_usd(historical_price)
        if current_usd < 1 or historical_usd < 1:
            raise UpstreamError(
                f"Upstream prices round below 1 USD (current={current_price}, historical={historical_price})"
            )

        payload = PricePayload(
            current_price_usd=current_usd,
            historical_price_usd=historical_usd,
            historical_target_date=iso_utc(target),
        )
        logger.debug("historical price resolved via %s for %s", source, payload.historical_target_date)
        return payload

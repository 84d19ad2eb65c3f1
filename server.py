import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import aiohttp
import orjson
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from btc_prices.config import get_settings
from btc_prices.event_logging import set_verbose
from btc_prices.logging_config import configure_logging
from btc_prices.models import CacheStatus, ErrorPayload
from btc_prices.price_cache import PriceCacheService
from btc_prices.providers import UpstreamError
from btc_prices.upstream import PriceFetcher

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger("obs.server")

set_verbose(settings.verbose_logs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: one shared HTTP session and one cache for the life of the process
    timeout = aiohttp.ClientTimeout(total=settings.upstream_timeout_seconds, connect=10)
    session = aiohttp.ClientSession(timeout=timeout)
    fetcher = PriceFetcher.from_settings(session, settings)
    app.state.price_service = PriceCacheService(fetcher.fetch, ttl_seconds=settings.cache_ttl_seconds)
    logger.info(
        "🚀 price service ready | ttl_s=%d coingecko_key=%s skippable=%s",
        settings.cache_ttl_seconds,
        "yes" if settings.coingecko_api_key else "no",
        ",".join(str(s) for s in sorted(settings.coingecko_skippable_statuses)) or "-",
    )

    yield

    # Shutdown
    await session.close()


app = FastAPI(title="BTC Price Cache", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["x-cache"],
)


def get_price_service(request: Request) -> PriceCacheService:
    return request.app.state.price_service


def _json_response(
    body: Dict[str, Any],
    *,
    status_code: int,
    cache_control: str,
    cache_status: CacheStatus,
) -> Response:
    return Response(
        content=orjson.dumps(body),
        status_code=status_code,
        media_type="application/json",
        headers={"Cache-Control": cache_control, "x-cache": cache_status.value},
    )


def ok_json(body: Dict[str, Any], cache_status: CacheStatus) -> Response:
    # s-maxage enables shared caching; stale-while-revalidate avoids thundering herds
    return _json_response(
        body,
        status_code=200,
        cache_control=(
            f"public, s-maxage={settings.cache_ttl_seconds}, "
            f"stale-while-revalidate={settings.stale_while_revalidate_seconds}"
        ),
        cache_status=cache_status,
    )


def err_json(message: str, status_code: int = 502, cache_status: CacheStatus = CacheStatus.MISS) -> Response:
    # Errors are cached briefly to dampen retry storms while upstream is down
    return _json_response(
        ErrorPayload(error=message).model_dump(),
        status_code=status_code,
        cache_control=(
            f"public, s-maxage={settings.error_cache_seconds}, "
            f"stale-while-revalidate={settings.error_stale_while_revalidate_seconds}"
        ),
        cache_status=cache_status,
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> Response:
    message = str(exc) or f"Server error fetching BTC prices: {exc!r}"
    return err_json(message, 502)


@app.get("/health")
async def health(service: PriceCacheService = Depends(get_price_service)) -> Dict[str, Any]:
    return {"status": "ok", "cache": service.snapshot()}


@app.get("/prices")
@app.get("/api/btc-prices")
async def get_prices(service: PriceCacheService = Depends(get_price_service)) -> Response:
    """Return the current and two-year-old BTC/USD price.

    - Served from the in-memory cache while fresh (``x-cache: HIT``).
    - Otherwise refreshed upstream; concurrent misses share one refresh (``x-cache: MISS``).
    - Upstream failures become 502 ``{"error": ...}`` via ``upstream_error_handler``.
    """
    lookup = await service.lookup()
    return ok_json(lookup.payload.to_wire(), lookup.status)


def run(host: Optional[str] = None, port: Optional[int] = None) -> None:
    import uvicorn

    logger.info("🚀 Starting BTC price cache server | endpoints: GET /prices, GET /api/btc-prices, GET /health")
    uvicorn.run(
        "server:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=False,
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    # Run with: python server.py
    run()

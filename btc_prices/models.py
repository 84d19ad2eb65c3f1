from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class CacheStatus(str, Enum):
    HIT = "HIT"
    MISS = "MISS"


class PricePayload(BaseModel):
    """Current and two-year-old BTC/USD price, rounded to whole dollars.

    Field aliases are the wire names the calculator UI reads.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    current_price_usd: int = Field(..., ge=1, alias="currentPriceUsd")
    historical_price_usd: int = Field(..., ge=1, alias="historicalPriceUsd")
    historical_target_date: str = Field(..., alias="historicalTargetDate")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ErrorPayload(BaseModel):
    error: str


@dataclass(frozen=True)
class CacheEntry:
    payload: PricePayload
    cached_at_ms: int


@dataclass(frozen=True)
class CacheLookup:
    payload: PricePayload
    status: CacheStatus

"""PriceObservation, PriceExtremes and collection run results."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Matches the DECIMAL(18, 8) price columns
PRICE_DECIMAL_PLACES = 8
PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_DECIMAL_PLACES)


class PriceSource(str, Enum):
    """Where an observation came from."""

    REST = "rest"
    WEBSOCKET = "websocket"
    BACKFILL = "backfill"


class PriceObservation(BaseModel):
    """Immutable price of one outcome token at one instant."""

    model_config = ConfigDict(frozen=True)

    market_id: str = Field(..., min_length=1)
    token_id: str = Field(..., min_length=1)
    outcome: str | None = None
    price: Decimal = Field(
        ..., ge=0, le=1, decimal_places=PRICE_DECIMAL_PLACES, description="Price in [0, 1]"
    )
    timestamp: int  # ms epoch
    source: PriceSource = PriceSource.REST

    @property
    def key(self) -> tuple[str, str]:
        return (self.market_id, self.token_id)


class PriceExtremes(BaseModel):
    """Derived lowest/highest/current price summary for one outcome token."""

    market_id: str
    token_id: str
    outcome: str | None = None
    lowest_price: Decimal
    lowest_price_ts: int
    highest_price: Decimal
    highest_price_ts: int
    current_price: Decimal
    current_price_ts: int
    first_recorded: int
    last_updated: int


class FrequencyDecision(BaseModel):
    """Result of the liveness check that picks the sampling cadence."""

    high_frequency: bool
    reason: str
    next_start_ms: int | None = None
    active_count: int = 0
    upcoming_count: int = 0


class RunSummary(BaseModel):
    """Counts reported by one collection run."""

    games_processed: int = 0
    request_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    price_records_stored: int = 0
    duration_sec: float = 0.0

"""Canonical schema (Pydantic) - catalog tree, price observations, extremes."""

from predprices.models.catalog import CatalogMarket, CatalogOutcome, Game
from predprices.models.price import (
    FrequencyDecision,
    PriceExtremes,
    PriceObservation,
    PriceSource,
    RunSummary,
)

__all__ = [
    "Game",
    "CatalogMarket",
    "CatalogOutcome",
    "PriceObservation",
    "PriceExtremes",
    "PriceSource",
    "FrequencyDecision",
    "RunSummary",
]

"""Game, CatalogMarket, CatalogOutcome - read-only catalog entities."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class CatalogOutcome(BaseModel):
    """One outcome of a catalog market (e.g. a team) and its CLOB token."""

    label: str | None = Field(None, validation_alias=AliasChoices("title", "outcome", "label"))
    token_id: str | None = Field(None, validation_alias=AliasChoices("tokenID", "tokenId", "token_id"))

    @field_validator("label", "token_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


class CatalogMarket(BaseModel):
    """Sub-market of a game (moneyline, spread, totals...)."""

    condition_id: str | None = Field(
        None, validation_alias=AliasChoices("conditionId", "condition_id")
    )
    market_type: str | None = Field(
        None, validation_alias=AliasChoices("sportsMarketType", "marketType", "market_type")
    )
    question: str | None = Field(None, validation_alias=AliasChoices("question", "marketSlug", "slug"))
    outcomes: list[CatalogOutcome] = Field(default_factory=list)

    @field_validator("condition_id", "market_type", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("outcomes", mode="before")
    @classmethod
    def _null_outcomes(cls, value: Any) -> Any:
        return value or []


class Game(BaseModel):
    """Catalog game row. Times are ms epoch; end_ms None means no end recorded."""

    game_id: str
    title: str = ""
    start_ms: int
    end_ms: int | None = None
    closed: bool = False
    markets: list[CatalogMarket] = Field(default_factory=list)

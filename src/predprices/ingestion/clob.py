"""Polymarket CLOB price client - single-token price lookups."""

from __future__ import annotations

import asyncio
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

import httpx
import structlog

from predprices.ingestion.rate_limit import RATE_LIMIT_COOLDOWN_SEC
from predprices.models.price import PRICE_QUANTUM

log = structlog.get_logger(__name__)

CLOB_BASE_URL = "https://clob.polymarket.com"
# SELL side: what a holder would receive
PRICE_SIDE = "SELL"


def parse_price(data: Any) -> Decimal | None:
    """Extract a [0, 1] price from a /price response ({"price": "0.65"} or {"mid": "0.65"})."""
    if not isinstance(data, dict):
        return None
    raw = data.get("price")
    if raw is None or raw == "":
        raw = data.get("mid")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        price = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    if not price.is_finite() or price < 0 or price > 1:
        return None
    # Stored as DECIMAL(18, 8)
    return price.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_EVEN).normalize()


class ClobPriceClient:
    """Fetches current token prices. Failures become None; rate limits are waited out."""

    def __init__(
        self,
        base_url: str = CLOB_BASE_URL,
        *,
        timeout: float = 10.0,
        rate_limit_cooldown_sec: float = RATE_LIMIT_COOLDOWN_SEC,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.rate_limit_cooldown_sec = rate_limit_cooldown_sec
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.rate_limit_hits = 0

    async def fetch_price(self, token_id: str) -> Decimal | None:
        """Return the SELL-side price for token_id, or None if it could not be fetched."""
        url = f"{self.base_url}/price"
        params = {"token_id": token_id, "side": PRICE_SIDE}
        while True:
            try:
                resp = await self._client.get(url, params=params)
            except httpx.HTTPError as e:
                log.warning("price_request_failed", token_id=token_id, error=str(e))
                return None
            if resp.status_code == 429:
                self.rate_limit_hits += 1
                log.warning(
                    "price_rate_limited",
                    token_id=token_id,
                    cooldown_sec=self.rate_limit_cooldown_sec,
                )
                await asyncio.sleep(self.rate_limit_cooldown_sec)
                continue
            break

        if not resp.is_success:
            log.warning("price_bad_status", token_id=token_id, status=resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            log.warning("price_invalid_json", token_id=token_id)
            return None
        price = parse_price(data)
        if price is None:
            log.warning("price_missing", token_id=token_id, body=str(data)[:200])
        return price

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ClobPriceClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

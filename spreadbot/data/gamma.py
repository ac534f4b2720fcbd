from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import dataclass

from spreadbot.data.http_service import HttpService


@dataclass(frozen=True)
class MarketInfo:
    market_id: str
    condition_id: str
    token_ids: tuple[str, str]
    outcome_prices: tuple[float, ...]
    tick_size: float
    min_order_size: float
    neg_risk: bool
    closed: bool

    @property
    def winning_index(self) -> int | None:
        """Index of the outcome priced at 1 once the market has settled, else None."""
        if not self.closed:
            return None
        for i, p in enumerate(self.outcome_prices):
            if p >= 0.99:
                return i
        return None

    @property
    def resolved(self) -> bool:
        return self.winning_index is not None


def _coerce_json_list(value) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip():
        try:
            out = json.loads(value)
        except ValueError:
            return []
        return out if isinstance(out, list) else []
    return []


def parse_gamma_event(market_id: str, event: dict) -> MarketInfo:
    markets = (event or {}).get("markets") or []
    if not markets:
        raise RuntimeError(f"gamma event {market_id}: no markets")
    m = markets[0]
    tokens = [str(t) for t in _coerce_json_list(m.get("clobTokenIds"))]
    if len(tokens) < 2:
        raise RuntimeError(f"gamma event {market_id}: missing clobTokenIds")
    prices = tuple(float(p) for p in _coerce_json_list(m.get("outcomePrices")))
    return MarketInfo(
        market_id=market_id,
        condition_id=str(m.get("conditionId", "") or ""),
        token_ids=(tokens[0], tokens[1]),
        outcome_prices=prices,
        tick_size=float(m.get("orderPriceMinTickSize") or 0.01),
        min_order_size=float(m.get("orderMinSize") or 0.0),
        neg_risk=bool(m.get("negRisk", False)),
        closed=bool(m.get("closed", False) or event.get("closed", False)),
    )


class MarketDataService:
    """Polymarket Gamma lookups by event slug."""

    def __init__(self, http: HttpService, *, base_url: str = "https://gamma-api.polymarket.com", log=None):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.log = log or logging.getLogger("spreadbot.gamma")

    async def get_market(self, market_id: str, *, cache_ttl: float = 30.0) -> MarketInfo:
        url = f"{self.base_url}/events/slug/{urllib.parse.quote(market_id)}"
        event = await self.http.get_json(url, cache_ttl=cache_ttl)
        if not event:
            raise RuntimeError(f"market not found: {market_id}")
        return parse_gamma_event(market_id, event)

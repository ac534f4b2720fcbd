from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from spreadbot.domain.models import (
    DOWN,
    OUTCOME_LOSS,
    OUTCOME_NO_FILL,
    OUTCOME_WIN,
    UP,
    Position,
    outcome_index,
)
from spreadbot.domain.positions import PositionBook
from spreadbot.settlement.risk import RiskLedger

OUTCOME_UNKNOWN = "unknown"


@dataclass(frozen=True)
class SettlementResult:
    position: Position
    outcome: str
    settle_price: float
    pnl: float
    method: str


def settled_direction(settle_price: float, window_open_price: float) -> str:
    return UP if settle_price >= window_open_price else DOWN


class SettlementManager:
    """Resolves positions whose window has ended and books their P&L exactly once.

    mode "venue" reads the market's settled outcome and falls back to comparing
    prices once ``resolution_timeout_ms`` has passed; mode "price" compares the
    settlement price with the captured window open straight away.
    """

    def __init__(
        self,
        ledger: RiskLedger,
        *,
        mode: str = "price",
        markets=None,
        orders=None,
        resolution_timeout_ms: int = 900_000,
        log: logging.Logger | None = None,
        events=None,
    ):
        if mode not in ("price", "venue"):
            raise RuntimeError(f"Unsupported RESOLUTION_MODE={mode}; use 'price' or 'venue'")
        if mode == "venue" and markets is None:
            raise RuntimeError("RESOLUTION_MODE=venue requires a market data service")
        self.ledger = ledger
        self.mode = mode
        self.markets = markets
        self.orders = orders
        self.resolution_timeout_ms = int(resolution_timeout_ms)
        self.log = log or logging.getLogger("spreadbot.settlement")
        self.events = events

    async def _matched_shares(self, p: Position) -> float:
        if self.orders is None or not p.order_id or p.order_id.startswith("DRY-"):
            return p.shares
        try:
            info = await self.orders.get_order(p.order_id)
        except Exception as exc:
            self.log.debug("get_order %s failed, assuming filled: %s", p.order_id[:14], exc)
            return p.shares
        if not info:
            return p.shares
        try:
            matched = float(info.get("size_matched") or 0.0)
        except (TypeError, ValueError):
            return p.shares
        return min(p.shares, matched)

    async def _venue_winner(self, p: Position) -> int | None:
        try:
            market = await self.markets.get_market(p.market_id, cache_ttl=0.0)
        except Exception as exc:
            self.log.debug("market %s lookup failed: %s", p.market_id, exc)
            return None
        return market.winning_index

    async def _resolve_direction(
        self, p: Position, now_ms: int, settle_price: Callable[[Position], tuple[float, bool]]
    ) -> tuple[str | None, float, str]:
        if self.mode == "venue":
            idx = await self._venue_winner(p)
            if idx is not None:
                return (UP if idx == outcome_index(UP) else DOWN), 0.0, "venue"
            if now_ms - int(p.window_key) * 1000 < self.resolution_timeout_ms:
                return None, 0.0, "pending"
        price, ok = settle_price(p)
        if ok and p.window_open_price > 0:
            return settled_direction(price, p.window_open_price), price, "price"
        return None, 0.0, "pending"

    async def settle(
        self,
        book: PositionBook,
        now_ms: int,
        settle_price: Callable[[Position], tuple[float, bool]],
    ) -> list[SettlementResult]:
        out: list[SettlementResult] = []
        for p in book.ended(now_ms):
            direction, ref_price, method = await self._resolve_direction(p, now_ms, settle_price)
            if direction is None:
                if now_ms - int(p.window_key) * 1000 >= self.resolution_timeout_ms:
                    self.log.warning("%s %s window %d unresolved after timeout; dropping",
                                     p.asset, p.tier, p.window_key)
                    out.append(self._close(book, p, OUTCOME_UNKNOWN, 0.0, 0.0, "timeout", now_ms))
                continue

            contracts = await self._matched_shares(p)
            if contracts <= 0:
                out.append(self._close(book, p, OUTCOME_NO_FILL, 0.0, 0.0, method, now_ms))
                continue
            won = direction == p.direction
            settle = 1.0 if won else 0.0
            pnl = round((settle - p.limit_price) * contracts, 6)
            result = self._close(book, p, OUTCOME_WIN if won else OUTCOME_LOSS, settle, pnl, method, now_ms)
            if self.ledger.record_result(won, pnl, now_ms):
                self.log.warning("loss streak hit; entries paused until %d", self.ledger.state.cooldown_until_ms)
                if self.events is not None:
                    self.events.emit("risk.cooldown", until_ms=self.ledger.state.cooldown_until_ms)
            self.log.info(
                "resolved %s %s %s dir=%s via %s ref=%.6f open=%.6f pnl=%+.4f | %s",
                p.asset, p.tier, result.outcome, p.direction, method, ref_price,
                p.window_open_price, pnl, self.ledger.summary(),
            )
            out.append(result)
        return out

    def _close(self, book: PositionBook, p: Position, outcome: str, settle: float, pnl: float,
               method: str, now_ms: int) -> SettlementResult:
        p.outcome = outcome
        p.pnl = pnl
        p.resolved_at_ms = int(now_ms)
        book.remove(p)
        if self.events is not None:
            self.events.emit(
                "position.resolved",
                asset=p.asset,
                tier=p.tier,
                window_key=p.window_key,
                direction=p.direction,
                outcome=outcome,
                pnl=pnl,
                method=method,
                order_id=p.order_id,
            )
        return SettlementResult(position=p, outcome=outcome, settle_price=settle, pnl=pnl, method=method)

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from dataclasses import dataclass

from spreadbot.domain.models import ERROR_INSUFFICIENT_BALANCE, ERROR_REJECTED, PlacementIntent, outcome_index

MIN_TICK = 0.01
MIN_NOTIONAL_USDC = 1.0

_BALANCE_RE = re.compile(r"not enough balance|allowance|insufficient", re.IGNORECASE)


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    reason: str
    order_id: str = ""
    token_id: str = ""
    price: float = 0.0
    shares: float = 0.0
    notional_usdc: float = 0.0
    error_kind: str = ""
    on_book: bool | None = None


def classify_error(message: str) -> str:
    return ERROR_INSUFFICIENT_BALANCE if _BALANCE_RE.search(str(message or "")) else ERROR_REJECTED


def tick_decimals(tick: float) -> int:
    return max(0, int(round(-math.log10(tick))))


def round_to_tick(price: float, tick: float) -> float:
    tick = max(MIN_TICK, float(tick or MIN_TICK))
    dec = tick_decimals(tick)
    px = round(round(float(price) / tick) * tick, dec)
    return min(round(1.0 - tick, dec), max(tick, px))


def share_count(price: float, size_usdc: float, *, min_order_size: float = 0.0,
                min_notional: float = MIN_NOTIONAL_USDC) -> int:
    """Whole shares for a notional at a price, lifted to the venue minimums."""
    if price <= 0:
        raise ValueError(f"price must be positive: {price}")
    by_size = math.floor(float(size_usdc) / price + 1e-9)
    by_notional = math.ceil(float(min_notional) / price - 1e-9)
    return int(max(by_size, by_notional, math.ceil(float(min_order_size or 0.0))))


class ExecutionManager:
    """Execution boundary. Keeps order routing out of the tier evaluator.

    Resolves the window's market and token, normalizes price and size to the
    venue's rules, posts a GTC limit BUY and classifies failures so the decision
    loop can choose between backoff and plain retry.
    """

    def __init__(
        self,
        *,
        dry_run: bool = True,
        markets=None,
        orders=None,
        confirm_on_book: bool = True,
        confirm_delays: tuple[float, ...] = (0.4, 0.6),
        min_notional: float = MIN_NOTIONAL_USDC,
        log: logging.Logger | None = None,
    ):
        self.dry_run = dry_run
        self.markets = markets
        self.orders = orders
        self.confirm_on_book = confirm_on_book
        self.confirm_delays = confirm_delays
        self.min_notional = min_notional
        self.log = log or logging.getLogger("spreadbot.execution")
        if not dry_run and (markets is None or orders is None):
            raise RuntimeError("live execution requires a market data service and an order client")

    async def place(self, intent: PlacementIntent) -> ExecutionResult:
        if self.dry_run:
            price = round_to_tick(intent.limit_price, MIN_TICK)
            shares = share_count(price, intent.size_usdc, min_notional=self.min_notional)
            return ExecutionResult(
                ok=True,
                reason="dry_run",
                order_id=f"DRY-{intent.asset[:3]}-{intent.tier}-{int(time.time() * 1000)}",
                price=price,
                shares=float(shares),
                notional_usdc=round(shares * price, 4),
            )

        try:
            market = await self.markets.get_market(intent.market_id)
        except Exception as exc:
            return ExecutionResult(ok=False, reason=f"market_lookup: {exc}", error_kind=ERROR_REJECTED)
        if market.closed:
            return ExecutionResult(ok=False, reason="market_closed", error_kind=ERROR_REJECTED)

        token_id = market.token_ids[outcome_index(intent.direction)]
        tick = max(MIN_TICK, market.tick_size)
        price = round_to_tick(intent.limit_price, tick)
        shares = share_count(price, intent.size_usdc, min_order_size=market.min_order_size,
                             min_notional=self.min_notional)

        try:
            resp = await self.orders.place_limit_order(
                token_id, price, float(shares), tick_size=tick, neg_risk=market.neg_risk
            )
        except Exception as exc:
            kind = classify_error(str(exc))
            return ExecutionResult(ok=False, reason=str(exc), token_id=token_id, price=price,
                                   shares=float(shares), error_kind=kind)

        err = resp.get("errorMsg") or resp.get("error") or ""
        if resp.get("success") is False or err:
            msg = str(err or "order rejected")
            return ExecutionResult(ok=False, reason=msg, token_id=token_id, price=price,
                                   shares=float(shares), error_kind=classify_error(msg))

        order_id = str(resp.get("orderID") or resp.get("id") or "")
        if not order_id:
            return ExecutionResult(ok=False, reason="no_order_id", token_id=token_id, price=price,
                                   shares=float(shares), error_kind=ERROR_REJECTED)

        on_book = await self._confirm_on_book(order_id) if self.confirm_on_book else None
        if on_book is False:
            self.log.warning("order %s accepted but not found on book yet", order_id[:14])
        return ExecutionResult(
            ok=True,
            reason="placed",
            order_id=order_id,
            token_id=token_id,
            price=price,
            shares=float(shares),
            notional_usdc=round(shares * price, 4),
            on_book=on_book,
        )

    async def _confirm_on_book(self, order_id: str) -> bool:
        for delay in self.confirm_delays:
            await asyncio.sleep(delay)
            try:
                info = await self.orders.get_order(order_id)
            except Exception as exc:
                self.log.debug("get_order %s failed: %s", order_id[:14], exc)
                continue
            if info:
                return True
        return False

    async def refresh_allowance(self) -> bool:
        if self.dry_run or self.orders is None:
            return False
        try:
            await self.orders.refresh_collateral_allowance()
            return True
        except Exception as exc:
            self.log.warning("collateral allowance refresh failed: %s", exc)
            return False

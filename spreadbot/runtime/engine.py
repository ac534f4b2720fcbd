from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import replace

from spreadbot.config.profiles import EngineProfile, apply_overrides
from spreadbot.data.store import BestEffort, StateStore
from spreadbot.domain.clock import WindowClock, now_ms
from spreadbot.domain.models import Position, Tier
from spreadbot.execution.manager import ExecutionManager, ExecutionResult
from spreadbot.settlement.manager import SettlementManager
from spreadbot.settlement.risk import RiskLedger
from spreadbot.strategy.engine import AssetCheck, TierEngine

SETTLE_RETRY_TICKS = 15


class SpreadEngine:
    """Decision loop for one profile.

    Each tick: detect window rollover (capture opens, settle ended positions),
    honour the emergency pause, refresh tier config, check the risk cooldown,
    then evaluate every asset's tiers highest first. Nothing raised inside a
    tick escapes ``run``; the next tick is scheduled after the minimum delay.
    """

    def __init__(
        self,
        *,
        profile: EngineProfile,
        tiers: TierEngine,
        clock: WindowClock,
        feed,
        execution: ExecutionManager,
        settlement: SettlementManager,
        ledger: RiskLedger,
        store: StateStore,
        best_effort: BestEffort,
        events=None,
        log: logging.Logger | None = None,
        bot: str = "",
        tick_interval_sec: float = 1.0,
        config_refresh_sec: float = 300.0,
        status_every_ticks: int = 30,
        pause_check_every_ticks: int = 10,
        sizing: str = "fixed",
        wall: Callable[[], int] = now_ms,
    ):
        self.base_profile = profile
        self.profile = profile
        self.tiers = tiers
        self.clock = clock
        self.feed = feed
        self.execution = execution
        self.settlement = settlement
        self.ledger = ledger
        self.store = store
        self.best_effort = best_effort
        self.events = events
        self.log = log or logging.getLogger("spreadbot.engine")
        self.bot = bot or profile.name
        self.tick_interval_sec = float(tick_interval_sec)
        self.config_refresh_ms = int(float(config_refresh_sec) * 1000)
        self.status_every_ticks = max(1, int(status_every_ticks))
        self.pause_check_every_ticks = max(1, int(pause_check_every_ticks))
        self.sizing = sizing
        self.wall = wall

        self.window_key = 0
        self.tick_count = 0
        self.paused = False
        self.placements = 0
        self.last_config_refresh_ms = 0
        self.last_skip: dict[tuple[str, str], str] = {}
        self.last_spread: dict[str, float | None] = {}
        # (asset, window_key) -> next window's open
        self.settle_prices: dict[tuple[str, int], float] = {}
        self._stop = asyncio.Event()

    # ── lifecycle ─────────────────────────────────────────────────────────

    async def restore_state(self) -> int:
        """Reload the risk ledger, then persisted blocks and early guard.

        Only deadlines still ahead survive. Returns the number of restored timers.
        """
        try:
            saved = await self.store.load_bankroll_state()
        except Exception as exc:
            self.log.warning("bankroll restore failed, starting from configured bankroll: %s", exc)
            saved = {}
        if saved and self.ledger.restore(saved):
            self.log.info("restored risk ledger: %s", self.ledger.summary())
        try:
            snap = await self.store.load_blocks()
        except Exception as exc:
            self.log.warning("block restore failed, starting clean: %s", exc)
            return 0
        restored = self.tiers.blocks.restore(snap or {}, self.wall())
        if restored:
            self.log.info("restored %d block/guard timers: %s", restored, self.tiers.blocks.snapshot())
        return restored

    async def run(self) -> None:
        self.log.info(
            "engine start bot=%s assets=%s window=%dm dry_run=%s",
            self.bot, ",".join(self.profile.assets), self.clock.window_minutes, self.execution.dry_run,
        )
        while not self._stop.is_set():
            started = time.monotonic()
            await self.safe_tick()
            delay = max(0.05, self.tick_interval_sec - (time.monotonic() - started))
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
        self.log.info("engine stopped; resting orders left on the book (%d open positions)",
                      len(self.tiers.positions))

    def stop(self) -> None:
        self._stop.set()

    async def safe_tick(self, now: int | None = None) -> None:
        try:
            await self.tick(now)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.exception("tick error: %s", exc)
            if self.events is not None:
                self.events.emit("tick.error", error=str(exc))
            self.best_effort.submit("log_error", self.store.log_error(str(exc), {"where": "tick", "bot": self.bot}))

    # ── tick ──────────────────────────────────────────────────────────────

    async def tick(self, now: int | None = None) -> None:
        now = self.wall() if now is None else int(now)
        self.tick_count += 1

        key = self.clock.window_key(now)
        if key != self.window_key:
            await self._rollover(key, now)
        elif self.tick_count % SETTLE_RETRY_TICKS == 0:
            await self._settle(now)
        else:
            # opens captured on retry land here on a later tick
            self._record_settle_prices(now)

        if self.tick_count == 1 or self.tick_count % self.pause_check_every_ticks == 0:
            await self._check_pause()
        if self.paused:
            return

        if self.last_config_refresh_ms == 0 or now - self.last_config_refresh_ms >= self.config_refresh_ms:
            await self.refresh_config(now)

        ok, reason = self.ledger.should_trade(now)
        if not ok:
            self._note_skip("*", "*", f"risk_{reason}")
            return

        secs = self.clock.seconds_into_window(now)
        for asset in self.profile.assets:
            await self._evaluate_asset(asset, now, secs)

        if self.tick_count % self.status_every_ticks == 0:
            self._log_status(now, secs)

    async def _rollover(self, key: int, now: int) -> None:
        previous = self.window_key
        self.window_key = key
        opens = self.feed.begin_window(self.clock.window_start_ms(now), now)
        self.tiers.begin_window(key)
        self.last_skip.clear()
        self.log.info(
            "window rollover %d -> %d opens=%s",
            previous, key,
            " ".join(f"{a}={o.price if o.ok else '-'}({o.provenance})" for a, o in opens.items()),
        )
        if self.events is not None:
            self.events.emit(
                "window.rollover",
                window_key=key,
                opens={a: {"price": o.price, "provenance": o.provenance} for a, o in opens.items()},
            )
        if previous:
            await self._settle(now)

    def _record_settle_prices(self, now: int) -> None:
        """Remember the current window's captured opens as the settlement prices of the window that ended."""
        ended_key = self.clock.window_start_ms(now) // 1000
        for asset in self.profile.assets:
            if (asset, ended_key) in self.settle_prices:
                continue
            opened = self.feed.window_open(asset)
            if opened.ok:
                self.settle_prices[(asset, ended_key)] = float(opened.price)
        horizon = (now - self.settlement.resolution_timeout_ms - self.clock.window_ms) // 1000
        for k in [k for k in self.settle_prices if k[1] < horizon]:
            del self.settle_prices[k]

    def settle_price_for(self, asset: str, window_key: int) -> tuple[float, bool]:
        price = self.settle_prices.get((asset, int(window_key)))
        if price is None:
            return 0.0, False
        return price, True

    def _settle_price(self, p: Position) -> tuple[float, bool]:
        return self.settle_price_for(p.asset, p.window_key)

    async def _settle(self, now: int) -> None:
        self._record_settle_prices(now)
        if not len(self.tiers.positions):
            return
        results = await self.settlement.settle(self.tiers.positions, now, self._settle_price)
        if results:
            self.best_effort.submit("save_bankroll_state", self.store.save_bankroll_state(self.ledger.snapshot()))

    async def _check_pause(self) -> None:
        try:
            paused = bool(await self.store.is_emergency_paused())
        except Exception as exc:
            self.log.warning("pause check failed, keeping paused=%s: %s", self.paused, exc)
            return
        if paused != self.paused:
            self.log.warning("emergency pause %s", "ON: no new entries" if paused else "OFF: resuming")
            if self.events is not None:
                self.events.emit("engine.pause", paused=paused)
        self.paused = paused

    async def refresh_config(self, now: int) -> bool:
        self.last_config_refresh_ms = now
        try:
            raw = await self.store.load_tier_config()
        except Exception as exc:
            self.log.warning("config refresh failed, keeping last config: %s", exc)
            return False
        try:
            profile = apply_overrides(self.base_profile, raw)
        except (TypeError, ValueError) as exc:
            self.log.warning("config refresh rejected (%s), keeping last config", exc)
            return False
        if profile != self.profile:
            self.log.info("tier config updated: %s", raw)
        self.profile = profile
        self.tiers.update(profile.engine, profile.tables)
        return True

    # ── per asset ─────────────────────────────────────────────────────────

    def _note_skip(self, asset: str, tier: str, reason: str) -> None:
        key = (asset, tier)
        if self.last_skip.get(key) != reason:
            self.log.debug("skip %s %s: %s", asset, tier, reason)
        self.last_skip[key] = reason

    async def _evaluate_asset(self, asset: str, now: int, secs: float) -> None:
        current = self.feed.current_price(asset, now)
        window_open = self.feed.window_open_price(asset, now)
        check = self.tiers.check_asset(
            asset, current=current, window_open=window_open, seconds_into_window=secs, now_ms=now
        )
        self.last_spread[asset] = check.signed_spread_pct
        if not check.ok:
            if check.reason == "early_guard_triggered":
                self._on_guard(asset, check, secs)
            elif check.reason == "stale_spread" and self.last_skip.get((asset, "*")) != "stale_spread":
                self.log.warning("%s spread frozen at %+.4f%%; skipping rest of window", asset, check.signed_spread_pct)
            self._note_skip(asset, "*", check.reason)
            return
        self._note_skip(asset, "*", "ok")

        for tier in self.tiers.tiers_for(asset):
            ok, reason = self.tiers.check_tier(asset, tier, check, seconds_into_window=secs, now_ms=now)
            if not ok:
                self._note_skip(asset, tier.name, reason)
                continue
            await self._attempt(asset, tier, check, current[0], window_open[0], now)

    def _on_guard(self, asset: str, check: AssetCheck, secs: float) -> None:
        self.log.warning(
            "early guard: %s moved %+.4f%% at %.0fs; all tiers suppressed until %d (%s scope)",
            asset, check.signed_spread_pct, secs, check.guard_until_ms, self.tiers.blocks.guard_scope,
        )
        if self.events is not None:
            self.events.emit("guard.triggered", asset=asset, spread_pct=check.signed_spread_pct,
                             seconds_into_window=secs, until_ms=check.guard_until_ms)
        self.best_effort.submit("save_blocks", self.store.save_blocks(self.tiers.blocks.snapshot()))

    def _stake(self) -> float:
        if self.sizing == "risk":
            return self.ledger.bet_size()
        return self.profile.engine.position_size_usdc

    async def _attempt(self, asset: str, tier: Tier, check: AssetCheck, spot: float, open_price: float,
                       now: int) -> None:
        intent = self.tiers.intent(
            asset, tier, check,
            market_id=self.clock.market_id(asset, now),
            spot_price=spot,
            window_open_price=open_price,
        )
        intent = replace(intent, size_usdc=self._stake())
        self.log.info(
            "%s %s fires: spread=%+.4f%% dir=%s limit=%.2f size=$%.2f market=%s",
            asset, tier.name, intent.signed_spread_pct, intent.direction, intent.limit_price,
            intent.size_usdc, intent.market_id,
        )
        result = await self.execution.place(intent)
        if result.ok:
            self._on_placed(tier, intent, result, now)
            return

        backoff_until = self.tiers.record_failure(result.error_kind, now)
        if self.events is not None:
            self.events.emit("tier.failed", asset=asset, tier=tier.name, window_key=intent.window_key,
                             error=result.reason, error_kind=result.error_kind)
        if backoff_until:
            self.log.warning(
                "%s %s balance/allowance shortfall (%s); placements paused for %.0fs",
                asset, tier.name, result.reason, (backoff_until - now) / 1000.0,
            )
            if self.events is not None:
                self.events.emit("backoff.start", until_ms=backoff_until)
            return
        self.log.error("%s %s placement failed: %s", asset, tier.name, result.reason)
        self.best_effort.submit(
            "log_error",
            self.store.log_error(
                result.reason,
                {"bot": self.bot, "asset": asset, "tier": tier.name, "market_id": intent.market_id,
                 "direction": intent.direction, "limit_price": intent.limit_price},
            ),
        )

    def _on_placed(self, tier: Tier, intent, result: ExecutionResult, now: int) -> None:
        position = Position(
            tier=tier.name,
            asset=intent.asset,
            window_key=intent.window_key,
            direction=intent.direction,
            limit_price=result.price or intent.limit_price,
            size_usdc=intent.size_usdc,
            shares=result.shares,
            order_id=result.order_id,
            signed_spread_pct=intent.signed_spread_pct,
            entered_at_ms=now,
            market_id=intent.market_id,
            token_id=result.token_id,
            window_open_price=intent.window_open_price,
            price_at_entry=intent.spot_price,
        )
        self.tiers.positions.add(position)
        blocked = self.tiers.record_placement(intent.asset, tier, now)
        self.placements += 1
        self.log.info(
            "%s %s placed order=%s %s @ %.2f x %.0f%s",
            intent.asset, tier.name, result.order_id[:16], intent.direction, position.limit_price,
            result.shares,
            "".join(f" | {t} blocked {(u - now) / 1000:.0f}s" for t, u in blocked.items()),
        )
        if self.events is not None:
            self.events.emit("tier.placed", asset=intent.asset, tier=tier.name, window_key=intent.window_key,
                             direction=intent.direction, order_id=result.order_id,
                             spread_pct=intent.signed_spread_pct, blocked=blocked)
        self.best_effort.submit(
            "log_position",
            self.store.log_position({
                "bot": self.bot,
                "asset": intent.asset,
                "venue": self.profile.venue,
                "window_id": intent.market_id,
                "strike_spread_pct": intent.signed_spread_pct,
                "position_size": intent.size_usdc,
                "order_id": result.order_id,
                "raw": {
                    "strategy": self.profile.name,
                    "tier": tier.name,
                    "direction": intent.direction,
                    "limit_price": position.limit_price,
                    "shares": result.shares,
                    "spot_price": intent.spot_price,
                    "window_open_price": intent.window_open_price,
                    "price_source": "chainlink",
                    "dry_run": self.execution.dry_run,
                },
            }),
        )
        if blocked:
            self.best_effort.submit("save_blocks", self.store.save_blocks(self.tiers.blocks.snapshot()))

    def _log_status(self, now: int, secs: float) -> None:
        parts = []
        for asset in self.profile.assets:
            spread = self.last_spread.get(asset)
            blocks = {t: int((u - now) / 1000) for t, u in self.tiers.blocks.blocks_for(asset).items() if u >= now}
            parts.append(
                f"{asset} spread={'-' if spread is None else f'{spread:+.3f}%'} "
                f"open={self.feed.window_open(asset).provenance} "
                f"skip={self.last_skip.get((asset, '*'), '-')}"
                + (f" blocks={blocks}" if blocks else "")
            )
        self.log.info(
            "status t=%.0fs feed=%s placed=%d open=%d guard=%s backoff=%s | %s | %s",
            secs,
            self.feed.state,
            self.placements,
            len(self.tiers.positions),
            max((self.tiers.blocks.guard_until(a) for a in self.profile.assets), default=0) > now,
            self.tiers.blocks.backoff_active(now),
            " ; ".join(parts),
            self.ledger.summary(),
        )

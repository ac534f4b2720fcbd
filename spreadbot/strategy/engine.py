from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from spreadbot.domain.models import ERROR_INSUFFICIENT_BALANCE, PlacementIntent, Tier, TierTable
from spreadbot.domain.positions import PositionBook
from spreadbot.strategy.blocking import BlockState
from spreadbot.strategy.gates import pass_tier_gates, signed_spread_pct, spread_direction


@dataclass(frozen=True)
class EngineConfig:
    failsafe_max_spread_pct: float = 2.0
    early_guard_spread_pct: float = 0.45
    early_guard_window_sec: float = 100.0
    early_guard_cooldown_min: float = 60.0
    balance_backoff_min: float = 5.0
    stale_spread_samples: int = 10
    position_size_usdc: float = 5.0


@dataclass(frozen=True)
class AssetCheck:
    ok: bool
    reason: str
    signed_spread_pct: float | None = None
    direction: str = ""
    guard_until_ms: int = 0

    @property
    def abs_spread_pct(self) -> float:
        return abs(self.signed_spread_pct or 0.0)


class TierEngine:
    """Tier evaluation state for one engine instance. No I/O.

    The decision loop drives it per asset: ``check_asset`` once, then
    ``check_tier`` for each tier of ``tiers_for`` (highest first), calling
    ``record_placement`` or ``record_failure`` after each order attempt so later
    tiers in the same tick see the updated blocks.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        tables: dict[str, TierTable],
        *,
        blocks: BlockState | None = None,
        positions: PositionBook | None = None,
    ):
        self.cfg = cfg
        self.tables = dict(tables)
        self.blocks = blocks if blocks is not None else BlockState()
        self.positions = positions if positions is not None else PositionBook()
        self.placed: set[tuple[str, str, int]] = set()
        self.window_key = 0
        self._spread_history: dict[str, deque] = {}
        self._stale_assets: set[str] = set()

    def update(self, cfg: EngineConfig, tables: dict[str, TierTable]) -> None:
        for table in tables.values():
            table.validate()
        self.cfg = cfg
        self.tables = dict(tables)

    def begin_window(self, window_key: int) -> None:
        self.window_key = int(window_key)
        self.placed = {k for k in self.placed if k[2] >= self.window_key}
        self._spread_history.clear()
        self._stale_assets.clear()

    def tiers_for(self, asset: str) -> list[Tier]:
        table = self.tables.get(asset)
        return table.highest_first() if table is not None else []

    def is_stale(self, asset: str) -> bool:
        return asset in self._stale_assets

    def _note_spread(self, asset: str, spread: float) -> bool:
        n = max(2, int(self.cfg.stale_spread_samples))
        hist = self._spread_history.get(asset)
        if hist is None or hist.maxlen != n:
            hist = deque(hist or (), maxlen=n)
            self._spread_history[asset] = hist
        hist.append(round(spread, 6))
        if len(hist) == n and len(set(hist)) == 1:
            self._stale_assets.add(asset)
            return True
        return False

    def check_asset(
        self,
        asset: str,
        *,
        current: tuple[float, bool],
        window_open: tuple[float, bool],
        seconds_into_window: float,
        now_ms: int,
    ) -> AssetCheck:
        cur_price, cur_ok = current
        open_price, open_ok = window_open
        if not cur_ok:
            return AssetCheck(False, "price_unavailable")
        if not open_ok:
            return AssetCheck(False, "open_unavailable")

        spread = signed_spread_pct(cur_price, open_price)
        direction = spread_direction(spread)
        if spread == 0:
            return AssetCheck(False, "zero_spread", spread, direction)
        if abs(spread) > self.cfg.failsafe_max_spread_pct:
            return AssetCheck(False, "failsafe", spread, direction)
        if asset in self._stale_assets or self._note_spread(asset, spread):
            return AssetCheck(False, "stale_spread", spread, direction)
        if self.blocks.guard_active(asset, now_ms):
            return AssetCheck(False, "early_guard", spread, direction, self.blocks.guard_until(asset))
        if (
            seconds_into_window <= self.cfg.early_guard_window_sec
            and abs(spread) >= self.cfg.early_guard_spread_pct
        ):
            until = self.blocks.trigger_guard(
                asset, now_ms, int(self.cfg.early_guard_cooldown_min * 60_000)
            )
            return AssetCheck(False, "early_guard_triggered", spread, direction, until)
        return AssetCheck(True, "ok", spread, direction)

    def check_tier(
        self,
        asset: str,
        tier: Tier,
        check: AssetCheck,
        *,
        seconds_into_window: float,
        now_ms: int,
    ) -> tuple[bool, str]:
        ok, reason = pass_tier_gates(
            tier,
            asset=asset,
            window_key=self.window_key,
            seconds_into_window=seconds_into_window,
            abs_spread_pct=check.abs_spread_pct,
            now_ms=now_ms,
            placed=self.placed,
            blocks=self.blocks,
            has_position=self.positions.has(tier.name, asset, self.window_key),
        )
        if not ok:
            return False, reason
        if self.blocks.backoff_active(now_ms):
            return False, "backoff"
        return True, "ok"

    def intent(self, asset: str, tier: Tier, check: AssetCheck, *, market_id: str,
               spot_price: float, window_open_price: float) -> PlacementIntent:
        return PlacementIntent(
            asset=asset,
            tier=tier.name,
            direction=check.direction,
            limit_price=tier.limit_price,
            size_usdc=self.cfg.position_size_usdc,
            market_id=market_id,
            window_key=self.window_key,
            signed_spread_pct=float(check.signed_spread_pct or 0.0),
            spot_price=spot_price,
            window_open_price=window_open_price,
        )

    def record_placement(self, asset: str, tier: Tier, now_ms: int) -> dict[str, int]:
        self.placed.add((tier.name, asset, self.window_key))
        return self.blocks.apply_blocks(asset, tier, now_ms)

    def record_failure(self, error_kind: str, now_ms: int) -> int:
        """Returns the backoff deadline when the failure starts one, else 0."""
        if error_kind != ERROR_INSUFFICIENT_BALANCE:
            return 0
        return self.blocks.start_backoff(now_ms, int(self.cfg.balance_backoff_min * 60_000))

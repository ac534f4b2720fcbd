from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

UP = "up"
DOWN = "down"

OPEN_LIVE = "live"
OPEN_RETRIED = "retried"
OPEN_UNAVAILABLE = "unavailable"

OUTCOME_WIN = "win"
OUTCOME_LOSS = "loss"
OUTCOME_NO_FILL = "no_fill"

ERROR_INSUFFICIENT_BALANCE = "insufficient_balance"
ERROR_REJECTED = "rejected"


def outcome_index(direction: str) -> int:
    """Token index of a direction in the market's [up, down] outcome pair."""
    return 0 if direction == UP else 1


@dataclass(frozen=True)
class PriceSample:
    asset: str
    price: float
    observed_at_ms: int

    def age_ms(self, now_ms: int) -> int:
        return int(now_ms) - int(self.observed_at_ms)

    def is_fresh(self, now_ms: int, max_age_ms: int) -> bool:
        return self.price > 0 and self.age_ms(now_ms) < max_age_ms


@dataclass(frozen=True)
class WindowOpen:
    price: float | None
    provenance: str = OPEN_UNAVAILABLE

    @property
    def ok(self) -> bool:
        return self.price is not None and self.price > 0


@dataclass(frozen=True)
class Tier:
    name: str
    rank: int
    spread_threshold_pct: float
    entry_not_before_sec: float
    limit_price: float
    entry_before_sec: float | None = None
    # lower tier name -> block minutes
    blocks: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TierTable:
    tiers: tuple[Tier, ...]

    def highest_first(self) -> list[Tier]:
        return sorted(self.tiers, key=lambda t: t.rank, reverse=True)

    def get(self, name: str) -> Tier | None:
        for t in self.tiers:
            if t.name == name:
                return t
        return None

    def validate(self) -> None:
        """Raise ValueError for tables the evaluator cannot order or block consistently."""
        names = [t.name for t in self.tiers]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate tier names: {names}")
        ranks = [t.rank for t in self.tiers]
        if len(set(ranks)) != len(ranks):
            raise ValueError(f"duplicate tier ranks: {ranks}")
        for t in self.tiers:
            if not 0.0 < t.limit_price < 1.0:
                raise ValueError(f"tier {t.name} limit_price must be in (0, 1): {t.limit_price}")
            if t.spread_threshold_pct <= 0:
                raise ValueError(f"tier {t.name} spread threshold must be positive")
            for target, minutes in t.blocks.items():
                lower = self.get(target)
                if lower is None:
                    raise ValueError(f"tier {t.name} blocks unknown tier {target}")
                if lower.rank >= t.rank:
                    raise ValueError(f"tier {t.name} may only block lower-ranked tiers, not {target}")
                if minutes <= 0:
                    raise ValueError(f"tier {t.name} block duration for {target} must be positive")
        by_rank = sorted(self.tiers, key=lambda t: t.rank)
        for low, high in zip(by_rank, by_rank[1:]):
            if high.spread_threshold_pct <= low.spread_threshold_pct:
                raise ValueError(
                    f"spread thresholds must increase with rank: {high.name}={high.spread_threshold_pct} "
                    f"vs {low.name}={low.spread_threshold_pct}"
                )
        blockers = [t for t in by_rank if t.blocks]
        for low, high in zip(blockers, blockers[1:]):
            if min(high.blocks.values()) <= max(low.blocks.values()):
                raise ValueError(
                    f"block durations must increase with rank: {high.name} "
                    f"{sorted(high.blocks.values())} vs {low.name} {sorted(low.blocks.values())}"
                )


@dataclass(frozen=True)
class PlacementIntent:
    asset: str
    tier: str
    direction: str
    limit_price: float
    size_usdc: float
    market_id: str
    window_key: int
    signed_spread_pct: float
    spot_price: float
    window_open_price: float


@dataclass
class Position:
    tier: str
    asset: str
    window_key: int
    direction: str
    limit_price: float
    size_usdc: float
    shares: float
    order_id: str
    signed_spread_pct: float
    entered_at_ms: int
    market_id: str = ""
    token_id: str = ""
    window_open_price: float = 0.0
    price_at_entry: float = 0.0
    outcome: str = ""
    pnl: float = 0.0
    resolved_at_ms: int = 0

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.tier, self.asset, self.window_key)

    @property
    def resolved(self) -> bool:
        return bool(self.outcome)


@dataclass
class RiskState:
    bankroll: float
    max_bankroll: float
    consecutive_losses: int = 0
    cooldown_until_ms: int = 0
    # most recent first
    results: deque = field(default_factory=lambda: deque(maxlen=200))

from __future__ import annotations

from spreadbot.domain.models import DOWN, UP, Tier
from spreadbot.strategy.blocking import BlockState


def signed_spread_pct(current: float, open_price: float) -> float:
    return (float(current) - float(open_price)) / float(current) * 100.0


def spread_direction(spread_pct: float) -> str:
    return UP if spread_pct >= 0 else DOWN


def pass_tier_gates(
    tier: Tier,
    *,
    asset: str,
    window_key: int,
    seconds_into_window: float,
    abs_spread_pct: float,
    now_ms: int,
    placed: set[tuple[str, str, int]],
    blocks: BlockState,
    has_position: bool,
) -> tuple[bool, str]:
    if (tier.name, asset, int(window_key)) in placed:
        return False, "already_placed"
    if seconds_into_window < tier.entry_not_before_sec:
        return False, "before_entry"
    if tier.entry_before_sec is not None and seconds_into_window >= tier.entry_before_sec:
        return False, "after_entry"
    if abs_spread_pct < tier.spread_threshold_pct:
        return False, "spread_below"
    if blocks.is_blocked(asset, tier.name, now_ms):
        return False, "blocked"
    if has_position:
        return False, "position_exists"
    return True, "ok"

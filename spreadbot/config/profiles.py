from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from spreadbot.domain.models import Tier, TierTable
from spreadbot.strategy.engine import EngineConfig

T3_ENTRY_BEFORE_SEC = 180.0


@dataclass(frozen=True)
class EngineProfile:
    """One bot variant: asset universe, window length, tier tables and guard tuning."""

    name: str
    venue: str
    assets: tuple[str, ...]
    symbols: dict[str, str]
    window_minutes: int
    slug_anchor: str
    tables: dict[str, TierTable]
    engine: EngineConfig
    early_guard_scope: str = "global"
    # per-asset store key label -> tier it sets; identity when empty
    asset_spread_keys: dict[str, str] = field(default_factory=dict)


def three_tier_table(
    t1_spread: float,
    t2_spread: float,
    t3_spread: float,
    *,
    t2_block_min: float = 5.0,
    t3_blocks_t2_min: float = 15.0,
    t3_blocks_t1_min: float = 60.0,
) -> TierTable:
    """T1 needs the smallest move and enters last; T3 needs the largest and enters first."""
    return TierTable(
        tiers=(
            Tier(name="T1", rank=1, spread_threshold_pct=t1_spread, entry_not_before_sec=250.0, limit_price=0.96),
            Tier(
                name="T2",
                rank=2,
                spread_threshold_pct=t2_spread,
                entry_not_before_sec=180.0,
                limit_price=0.97,
                blocks={"T1": t2_block_min},
            ),
            Tier(
                name="T3",
                rank=3,
                spread_threshold_pct=t3_spread,
                entry_not_before_sec=100.0,
                entry_before_sec=T3_ENTRY_BEFORE_SEC,
                limit_price=0.97,
                blocks={"T2": t3_blocks_t2_min, "T1": t3_blocks_t1_min},
            ),
        )
    )


def _b5_profile() -> EngineProfile:
    return EngineProfile(
        name="b5-5m",
        venue="polymarket",
        assets=("ETH", "SOL", "XRP"),
        symbols={"eth/usd": "ETH", "sol/usd": "SOL", "xrp/usd": "XRP"},
        window_minutes=5,
        slug_anchor="start",
        tables={
            "ETH": three_tier_table(0.110, 0.181, 0.32),
            "SOL": three_tier_table(0.121, 0.206, 0.32),
            "XRP": three_tier_table(0.121, 0.206, 0.32),
        },
        engine=EngineConfig(early_guard_spread_pct=0.45, early_guard_cooldown_min=60.0),
        # the b5 dashboard stores the high threshold in {asset}_t1_spread and the low one in {asset}_t3_spread
        asset_spread_keys={"t1": "T3", "t2": "T2", "t3": "T1"},
    )


def _b4_profile() -> EngineProfile:
    return EngineProfile(
        name="b4-5m",
        venue="polymarket",
        assets=("BTC",),
        symbols={"btc/usd": "BTC"},
        window_minutes=5,
        slug_anchor="start",
        tables={"BTC": three_tier_table(0.10, 0.21, 0.45, t3_blocks_t1_min=45.0)},
        engine=EngineConfig(early_guard_spread_pct=0.6, early_guard_cooldown_min=60.0),
    )


PROFILES = {
    "b5-5m": _b5_profile,
    "b4-5m": _b4_profile,
}


def get_profile(name: str) -> EngineProfile:
    factory = PROFILES.get(str(name).strip().lower())
    if factory is None:
        raise RuntimeError(f"Unknown BOT_PROFILE={name}. Use one of: {', '.join(sorted(PROFILES))}")
    profile = factory()
    for table in profile.tables.values():
        table.validate()
    return profile


def _num(raw: dict[str, Any], key: str) -> float | None:
    val = raw.get(key)
    if val is None or val == "":
        return None
    out = float(val)
    return out if out > 0 else None


def _asset_key_label(profile: EngineProfile, tier_name: str) -> str:
    for label, name in profile.asset_spread_keys.items():
        if name == tier_name:
            return label
    return tier_name.lower()


def _override_tier(tier: Tier, raw: dict[str, Any], asset: str, asset_label: str) -> Tier:
    n = tier.name.lower()
    spread = _num(raw, f"{asset.lower()}_{asset_label}_spread") or _num(raw, f"{n}_spread")
    blocks = dict(tier.blocks)
    if tier.name == "T2":
        val = _num(raw, "t2_block_min")
        if val is not None:
            blocks["T1"] = val
    if tier.name == "T3":
        both = _num(raw, "t3_block_min")
        t2 = _num(raw, "t3_blocks_t2_min") or both
        t1 = _num(raw, "t3_blocks_t1_min") or both
        if t2 is not None:
            blocks["T2"] = t2
        if t1 is not None:
            blocks["T1"] = t1
    return replace(
        tier,
        spread_threshold_pct=spread if spread is not None else tier.spread_threshold_pct,
        blocks=blocks,
    )


def apply_overrides(profile: EngineProfile, raw: dict[str, Any] | None) -> EngineProfile:
    """Apply flat store config keys (eth_t1_spread, t2_block_min, position_size, ...).

    Per-asset spread keys go through ``profile.asset_spread_keys``; global
    ``tN_spread`` keys always set tier TN. Raises ValueError when the result is not a valid tier table; callers keep the
    previous profile in that case.
    """
    if not raw:
        return profile
    tables: dict[str, TierTable] = {}
    for asset, table in profile.tables.items():
        new_table = TierTable(
            tiers=tuple(_override_tier(t, raw, asset, _asset_key_label(profile, t.name)) for t in table.tiers)
        )
        new_table.validate()
        tables[asset] = new_table

    eng = profile.engine
    size = _num(raw, "position_size")
    guard_pct = _num(raw, "early_guard_spread_pct")
    guard_min = _num(raw, "early_guard_cooldown_min")
    eng = replace(
        eng,
        position_size_usdc=size if size is not None else eng.position_size_usdc,
        early_guard_spread_pct=guard_pct if guard_pct is not None else eng.early_guard_spread_pct,
        early_guard_cooldown_min=guard_min if guard_min is not None else eng.early_guard_cooldown_min,
    )
    return replace(profile, tables=tables, engine=eng)

from .blocking import BlockState
from .engine import AssetCheck, EngineConfig, TierEngine
from .gates import pass_tier_gates, signed_spread_pct, spread_direction

__all__ = [
    "AssetCheck",
    "BlockState",
    "EngineConfig",
    "TierEngine",
    "pass_tier_gates",
    "signed_spread_pct",
    "spread_direction",
]

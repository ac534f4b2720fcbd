from .clock import WindowClock, now_ms
from .models import (
    DOWN,
    UP,
    PlacementIntent,
    Position,
    PriceSample,
    RiskState,
    Tier,
    TierTable,
    WindowOpen,
)
from .positions import PositionBook

__all__ = [
    "DOWN",
    "UP",
    "PlacementIntent",
    "Position",
    "PositionBook",
    "PriceSample",
    "RiskState",
    "Tier",
    "TierTable",
    "WindowClock",
    "WindowOpen",
    "now_ms",
]

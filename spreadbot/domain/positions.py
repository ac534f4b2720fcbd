from __future__ import annotations

from spreadbot.domain.models import Position


class PositionBook:
    """Open positions keyed by (tier, asset, window_key). Owned by the decision loop."""

    def __init__(self) -> None:
        self._open: dict[tuple[str, str, int], Position] = {}

    def __len__(self) -> int:
        return len(self._open)

    def add(self, position: Position) -> None:
        self._open[position.key] = position

    def has(self, tier: str, asset: str, window_key: int) -> bool:
        return (tier, asset, int(window_key)) in self._open

    def open_positions(self) -> list[Position]:
        return list(self._open.values())

    def ended(self, now_ms: int) -> list[Position]:
        """Positions whose window end (window_key seconds) is at or before now."""
        return [p for p in self._open.values() if int(p.window_key) * 1000 <= int(now_ms)]

    def remove(self, position: Position) -> bool:
        return self._open.pop(position.key, None) is not None

from __future__ import annotations

import time
from dataclasses import dataclass


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class WindowClock:
    """Fixed-length window arithmetic. Stateless: same input, same output."""

    window_minutes: int = 5
    # "end" keys market ids on the window-end timestamp, "start" on the window start
    slug_anchor: str = "end"

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes) * 60_000

    def window_end_ms(self, now: int) -> int:
        now = int(now)
        return now - (now % self.window_ms) + self.window_ms

    def window_start_ms(self, now: int) -> int:
        return self.window_end_ms(now) - self.window_ms

    def window_key(self, now: int) -> int:
        return self.window_end_ms(now) // 1000

    def seconds_into_window(self, now: int) -> float:
        return (int(now) - self.window_start_ms(now)) / 1000.0

    def ms_until_window_end(self, now: int) -> int:
        return self.window_end_ms(now) - int(now)

    def minutes_left(self, now: int) -> float:
        return max(0.0, self.ms_until_window_end(now) / 60_000.0)

    def market_id(self, asset: str, now: int) -> str:
        anchor_ms = self.window_start_ms(now) if self.slug_anchor == "start" else self.window_end_ms(now)
        return f"{asset.lower()}-updown-{self.window_minutes}m-{anchor_ms // 1000}"

    def market_id_for_key(self, asset: str, window_key: int) -> str:
        """Market id of an already-known window, e.g. one that has since ended."""
        return self.market_id(asset, int(window_key) * 1000 - 1)

from __future__ import annotations

from typing import Any

from spreadbot.domain.models import Tier

GLOBAL_KEY = "*"


class BlockState:
    """Per-engine blocking timers.

    Three independent timers live here:
    - tier blocks per (asset, tier), set when a higher tier fires;
    - the early-guard timer, per asset or global depending on ``guard_scope``;
    - the placement backoff, global, started by balance/allowance shortfalls.

    Timers only ever extend: setting an earlier deadline than the current one is a no-op.
    """

    def __init__(self, *, guard_scope: str = "global"):
        if guard_scope not in ("global", "asset"):
            raise ValueError(f"guard_scope must be 'global' or 'asset', got {guard_scope!r}")
        self.guard_scope = guard_scope
        self._blocked: dict[tuple[str, str], int] = {}
        self._guard_until: dict[str, int] = {}
        self.backoff_until_ms = 0

    # tier blocks

    def block(self, asset: str, tier: str, until_ms: int) -> int:
        key = (asset, tier)
        until = max(int(self._blocked.get(key, 0)), int(until_ms))
        self._blocked[key] = until
        return until

    def blocked_until(self, asset: str, tier: str) -> int:
        return int(self._blocked.get((asset, tier), 0))

    def is_blocked(self, asset: str, tier: str, now_ms: int) -> bool:
        # inclusive: a tier is eligible again strictly after its deadline
        until = self.blocked_until(asset, tier)
        return until > 0 and int(now_ms) <= until

    def apply_blocks(self, asset: str, tier: Tier, now_ms: int) -> dict[str, int]:
        out: dict[str, int] = {}
        for target, minutes in tier.blocks.items():
            out[target] = self.block(asset, target, int(now_ms) + int(float(minutes) * 60_000))
        return out

    def blocks_for(self, asset: str) -> dict[str, int]:
        return {tier: until for (a, tier), until in self._blocked.items() if a == asset}

    # early guard

    def _guard_key(self, asset: str) -> str:
        return GLOBAL_KEY if self.guard_scope == "global" else asset

    def trigger_guard(self, asset: str, now_ms: int, cooldown_ms: int) -> int:
        key = self._guard_key(asset)
        until = max(int(self._guard_until.get(key, 0)), int(now_ms) + int(cooldown_ms))
        self._guard_until[key] = until
        return until

    def set_guard(self, key: str, until_ms: int) -> None:
        self._guard_until[key] = max(int(self._guard_until.get(key, 0)), int(until_ms))

    def guard_until(self, asset: str) -> int:
        return max(int(self._guard_until.get(GLOBAL_KEY, 0)), int(self._guard_until.get(asset, 0)))

    def guard_active(self, asset: str, now_ms: int) -> bool:
        return int(now_ms) < self.guard_until(asset)

    # placement backoff

    def start_backoff(self, now_ms: int, duration_ms: int) -> int:
        self.backoff_until_ms = max(int(self.backoff_until_ms), int(now_ms) + int(duration_ms))
        return self.backoff_until_ms

    def backoff_active(self, now_ms: int) -> bool:
        return int(now_ms) < int(self.backoff_until_ms)

    # housekeeping

    def clear(self, asset: str | None = None) -> None:
        if asset is None:
            self._blocked.clear()
            self._guard_until.clear()
            self.backoff_until_ms = 0
            return
        for key in [k for k in self._blocked if k[0] == asset]:
            del self._blocked[key]
        self._guard_until.pop(asset, None)

    def snapshot(self) -> dict[str, Any]:
        blocks: dict[str, dict[str, int]] = {}
        for (asset, tier), until in self._blocked.items():
            blocks.setdefault(asset, {})[tier] = until
        return {
            "blocks": blocks,
            "guard": dict(self._guard_until),
            "backoff_until_ms": int(self.backoff_until_ms),
        }

    def restore(self, snap: dict[str, Any], now_ms: int) -> int:
        """Load a snapshot, keeping only deadlines still in the future. Returns timers restored."""
        restored = 0
        for asset, tiers in (snap.get("blocks") or {}).items():
            for tier, until in (tiers or {}).items():
                if int(until or 0) > int(now_ms):
                    self.block(asset, tier, int(until))
                    restored += 1
        for key, until in (snap.get("guard") or {}).items():
            if int(until or 0) > int(now_ms):
                self.set_guard(key, int(until))
                restored += 1
        backoff = int(snap.get("backoff_until_ms") or 0)
        if backoff > int(now_ms):
            self.backoff_until_ms = max(self.backoff_until_ms, backoff)
            restored += 1
        return restored

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable
from pathlib import Path
from typing import Any


class StateStore:
    """Configuration/state store used by the engine.

    Implementations may raise on transport failure; the engine only calls the
    write methods through ``BestEffort`` and keeps its last config when a read fails.
    """

    async def load_tier_config(self) -> dict[str, Any]:
        raise NotImplementedError

    async def is_emergency_paused(self) -> bool:
        raise NotImplementedError

    async def set_emergency_paused(self, paused: bool) -> None:
        raise NotImplementedError

    async def log_position(self, record: dict[str, Any]) -> None:
        raise NotImplementedError

    async def log_error(self, err: str, context: dict[str, Any]) -> None:
        raise NotImplementedError

    async def save_bankroll_state(self, state: dict[str, Any]) -> None:
        """Merge ``state`` into the saved bankroll record; keys not given are kept."""
        raise NotImplementedError

    async def load_bankroll_state(self) -> dict[str, Any]:
        raise NotImplementedError

    async def load_blocks(self) -> dict[str, Any]:
        raise NotImplementedError

    async def save_blocks(self, snapshot: dict[str, Any]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _write_json_atomic(path: Path, payload: Any) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=True, separators=(",", ":")))
    tmp.replace(path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text())
    except ValueError:
        return default


class LocalStateStore(StateStore):
    """JSON files under ``<data_dir>/<bot>/``. Positions and errors are appended as JSONL."""

    def __init__(self, data_dir: str, bot: str):
        self.bot = bot
        self.root = Path(data_dir) / bot
        self.root.mkdir(parents=True, exist_ok=True)
        self.config_path = self.root / "tier_config.json"
        self.control_path = self.root / "control.json"
        self.bankroll_path = self.root / "bankroll.json"
        self.blocks_path = self.root / "blocks.json"
        self.positions_path = self.root / "positions.jsonl"
        self.errors_path = self.root / "errors.jsonl"

    def _append(self, path: Path, row: dict[str, Any]) -> None:
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(row, separators=(",", ":"), ensure_ascii=True, default=str) + "\n")

    async def load_tier_config(self) -> dict[str, Any]:
        raw = _read_json(self.config_path, {})
        if not isinstance(raw, dict):
            raise RuntimeError(f"tier config is not an object: {self.config_path}")
        return raw

    async def is_emergency_paused(self) -> bool:
        return bool(_read_json(self.control_path, {}).get("emergency_paused", False))

    async def set_emergency_paused(self, paused: bool) -> None:
        control = _read_json(self.control_path, {})
        control["emergency_paused"] = bool(paused)
        control["updated_at"] = time.time()
        _write_json_atomic(self.control_path, control)

    async def log_position(self, record: dict[str, Any]) -> None:
        self._append(self.positions_path, {"ts": time.time(), **record})

    async def log_error(self, err: str, context: dict[str, Any]) -> None:
        self._append(self.errors_path, {"ts": time.time(), "bot": self.bot, "error": err, "context": context})

    async def save_bankroll_state(self, state: dict[str, Any]) -> None:
        saved = _read_json(self.bankroll_path, {})
        if not isinstance(saved, dict):
            saved = {}
        _write_json_atomic(self.bankroll_path, {**saved, **state, "updated_at": time.time()})

    async def load_bankroll_state(self) -> dict[str, Any]:
        saved = _read_json(self.bankroll_path, {})
        return saved if isinstance(saved, dict) else {}

    async def load_blocks(self) -> dict[str, Any]:
        return _read_json(self.blocks_path, {})

    async def save_blocks(self, snapshot: dict[str, Any]) -> None:
        _write_json_atomic(self.blocks_path, snapshot)

    def read_positions(self) -> list[dict[str, Any]]:
        if not self.positions_path.exists():
            return []
        return [json.loads(line) for line in self.positions_path.read_text().splitlines() if line.strip()]


class BestEffort:
    """Fire-and-forget runner for store side effects. Failures are logged, never raised."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger("spreadbot.store")
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    def submit(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self.failures += 1
                self.log.warning("store %s failed: %s", name, exc)

        task.add_done_callback(_done)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for t in pending:
            t.cancel()
        if pending:
            self.log.warning("store drain: %d writes abandoned after %.1fs", len(pending), timeout)

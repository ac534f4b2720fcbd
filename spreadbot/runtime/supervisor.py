from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field


@dataclass
class LoopHealth:
    name: str
    restarts: int = 0
    last_error: str = ""
    alive: bool = False


@dataclass
class RuntimeHealth:
    loops: dict[str, LoopHealth] = field(default_factory=dict)

    def touch(self, name: str, *, alive: bool | None = None, err: str = "") -> LoopHealth:
        h = self.loops.get(name)
        if h is None:
            h = LoopHealth(name=name)
            self.loops[name] = h
        if alive is not None:
            h.alive = alive
        if err:
            h.last_error = err
        return h

    def restarted(self, name: str, err: Exception) -> None:
        self.touch(name, alive=False, err=str(err)).restarts += 1

    def summary(self) -> str:
        if not self.loops:
            return "loops=0"
        up = sum(1 for h in self.loops.values() if h.alive)
        restarts = sum(h.restarts for h in self.loops.values())
        return f"loops={up}/{len(self.loops)} restarts={restarts}"


class LoopSupervisor:
    """Restarts managed async loops after failure with bounded backoff."""

    def __init__(self, *, base_delay: float = 2.0, max_delay: float = 20.0, health: RuntimeHealth | None = None):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.health = health if health is not None else RuntimeHealth()

    async def run_forever(self, name: str, fn: Callable[[], Awaitable[None]], log,
                          should_stop: Callable[[], bool] | None = None) -> None:
        delay = self.base_delay
        while True:
            try:
                self.health.touch(name, alive=True)
                await fn()
                self.health.touch(name, alive=False)
                if should_stop is not None and should_stop():
                    return
                log.warning("loop %s exited cleanly; restarting", name)
            except asyncio.CancelledError:
                self.health.touch(name, alive=False)
                raise
            except Exception as exc:
                self.health.restarted(name, exc)
                log.exception("loop %s crashed: %s", name, exc)
            await asyncio.sleep(delay)
            delay = min(self.max_delay, max(self.base_delay, delay * 1.5))

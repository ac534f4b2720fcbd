import asyncio
import logging

from spreadbot.infra.telemetry import RuntimeEventLogger
from spreadbot.runtime.supervisor import LoopSupervisor


def test_event_logger_appends_jsonl(tmp_path) -> None:
    events = RuntimeEventLogger(str(tmp_path), bot="b5-5m")
    events.emit("tier.placed", asset="ETH", tier="T2")
    events.emit("window.soft_reset", asset="SOL")
    rows = events.read()
    assert [r["event"] for r in rows] == ["tier.placed", "window.soft_reset"]
    assert rows[0]["bot"] == "b5-5m"
    assert events.read(limit=1)[0]["asset"] == "SOL"


def test_supervisor_restarts_crashed_loop() -> None:
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("socket reset")

    async def main():
        sup = LoopSupervisor(base_delay=0.0, max_delay=0.0)
        await sup.run_forever("feed", flaky, logging.getLogger("test.sup"), should_stop=lambda: len(calls) >= 3)
        return sup

    sup = asyncio.run(main())
    assert len(calls) == 3
    assert sup.health.loops["feed"].restarts == 2
    assert sup.health.loops["feed"].last_error == "socket reset"
    assert sup.health.summary() == "loops=0/1 restarts=2"

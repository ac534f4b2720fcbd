import asyncio
import logging

from spreadbot.data.store import BestEffort, LocalStateStore


def test_local_store_roundtrip(tmp_path) -> None:
    store = LocalStateStore(str(tmp_path), "b5-5m")

    async def main():
        assert await store.load_tier_config() == {}
        assert await store.is_emergency_paused() is False
        await store.set_emergency_paused(True)
        assert await store.is_emergency_paused() is True
        await store.save_blocks({"blocks": {"ETH": {"T1": 123}}, "guard": {}, "backoff_until_ms": 0})
        await store.log_position({"asset": "ETH", "order_id": "DRY-1"})
        await store.log_error("boom", {"where": "tick"})
        await store.save_bankroll_state({"bankroll": 101.5})
        return await store.load_blocks()

    blocks = asyncio.run(main())
    assert blocks["blocks"] == {"ETH": {"T1": 123}}
    rows = store.read_positions()
    assert rows[0]["order_id"] == "DRY-1"
    assert "ts" in rows[0]
    assert (tmp_path / "b5-5m" / "errors.jsonl").read_text().count("boom") == 1
    assert not list((tmp_path / "b5-5m").glob("*.tmp"))


def test_local_store_reads_operator_config(tmp_path) -> None:
    store = LocalStateStore(str(tmp_path), "b4-5m")
    store.config_path.write_text('{"t1_spread": 0.12}')
    assert asyncio.run(store.load_tier_config()) == {"t1_spread": 0.12}


def test_best_effort_swallows_failures() -> None:
    async def fails():
        raise RuntimeError("supabase down")

    async def works(out):
        out.append("ok")

    async def main():
        runner = BestEffort(logging.getLogger("test.best_effort"))
        out = []
        runner.submit("log_error", fails())
        runner.submit("log_position", works(out))
        await runner.drain()
        await asyncio.sleep(0)
        return runner, out

    runner, out = asyncio.run(main())
    assert out == ["ok"]
    assert runner.failures == 1
    assert runner.pending == 0


def test_bankroll_writes_merge_wallet_and_ledger(tmp_path) -> None:
    store = LocalStateStore(str(tmp_path), "b5-5m")

    async def main():
        await store.save_bankroll_state({"bankroll": 95.0, "max_bankroll": 120.0, "cooldown_until_ms": 777})
        await store.save_bankroll_state({"wallet_usdc": 250.5})
        first = await store.load_bankroll_state()
        await store.save_bankroll_state({"bankroll": 96.0, "max_bankroll": 120.0, "cooldown_until_ms": 0})
        return first, await store.load_bankroll_state()

    first, second = asyncio.run(main())
    assert first["bankroll"] == 95.0
    assert first["cooldown_until_ms"] == 777
    assert first["wallet_usdc"] == 250.5
    assert second["bankroll"] == 96.0
    assert second["wallet_usdc"] == 250.5


def test_missing_bankroll_file_loads_empty(tmp_path) -> None:
    store = LocalStateStore(str(tmp_path), "b4-5m")
    assert asyncio.run(store.load_bankroll_state()) == {}

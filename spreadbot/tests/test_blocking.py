from spreadbot.strategy.blocking import BlockState
from spreadbot.tests.fakes import two_tier_table


def test_blocks_only_extend() -> None:
    b = BlockState()
    assert b.block("ETH", "T1", 10_000) == 10_000
    assert b.block("ETH", "T1", 5_000) == 10_000
    assert b.block("ETH", "T1", 20_000) == 20_000


def test_block_deadline_inclusive_then_eligible() -> None:
    b = BlockState()
    t = 1_000_000
    applied = b.apply_blocks("ETH", two_tier_table(block_min=5).get("T2"), t)
    assert applied == {"T1": t + 300_000}
    assert b.is_blocked("ETH", "T1", t + 300_000)
    assert not b.is_blocked("ETH", "T1", t + 300_001)
    assert not b.is_blocked("SOL", "T1", t + 1)


def test_guard_scope_global_vs_asset() -> None:
    g = BlockState(guard_scope="global")
    g.trigger_guard("ETH", 0, 60_000)
    assert g.guard_active("SOL", 30_000)

    a = BlockState(guard_scope="asset")
    a.trigger_guard("ETH", 0, 60_000)
    assert a.guard_active("ETH", 30_000)
    assert not a.guard_active("SOL", 30_000)
    assert not a.guard_active("ETH", 60_000)


def test_backoff_window() -> None:
    b = BlockState()
    until = b.start_backoff(1_000, 300_000)
    assert until == 301_000
    assert b.backoff_active(300_999)
    assert not b.backoff_active(301_000)


def test_snapshot_restore_keeps_future_only() -> None:
    b = BlockState()
    b.block("ETH", "T1", 50_000)
    b.block("ETH", "T2", 500_000)
    b.trigger_guard("ETH", 0, 900_000)
    snap = b.snapshot()

    fresh = BlockState()
    restored = fresh.restore(snap, 100_000)
    assert restored == 2
    assert not fresh.is_blocked("ETH", "T1", 100_001)
    assert fresh.is_blocked("ETH", "T2", 100_001)
    assert fresh.guard_active("XRP", 100_001)


def test_clear_single_asset() -> None:
    b = BlockState(guard_scope="asset")
    b.block("ETH", "T1", 10_000)
    b.block("SOL", "T1", 10_000)
    b.trigger_guard("ETH", 0, 10_000)
    b.clear("ETH")
    assert b.blocks_for("ETH") == {}
    assert b.blocks_for("SOL") == {"T1": 10_000}
    assert not b.guard_active("ETH", 1)

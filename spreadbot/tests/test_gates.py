import math

from spreadbot.domain.models import DOWN, UP
from spreadbot.strategy.blocking import BlockState
from spreadbot.strategy.gates import pass_tier_gates, signed_spread_pct, spread_direction
from spreadbot.tests.fakes import two_tier_table


def _gates(tier, **kw):
    args = dict(
        asset="ETH",
        window_key=100,
        seconds_into_window=150.0,
        abs_spread_pct=0.5,
        now_ms=1_000,
        placed=set(),
        blocks=BlockState(),
        has_position=False,
    )
    args.update(kw)
    return pass_tier_gates(tier, **args)


def test_spread_is_scale_invariant_and_signed() -> None:
    for cur, op in [(100.5, 100.0), (99.2, 100.0), (0.6123, 0.61), (65000.0, 64900.0)]:
        base = signed_spread_pct(cur, op)
        for scale in (2.0, 0.001, 1000.0):
            assert math.isclose(signed_spread_pct(cur * scale, op * scale), base, rel_tol=1e-9)
        assert (base > 0) == (cur > op)


def test_spread_value_uses_current_as_base() -> None:
    assert math.isclose(signed_spread_pct(100.5, 100.0), 0.5 / 100.5 * 100)


def test_direction_from_sign() -> None:
    assert spread_direction(0.3) == UP
    assert spread_direction(0.0) == UP
    assert spread_direction(-0.01) == DOWN


def test_gate_reasons() -> None:
    t2 = two_tier_table().get("T2")
    assert _gates(t2) == (True, "ok")
    assert _gates(t2, placed={("T2", "ETH", 100)}) == (False, "already_placed")
    assert _gates(t2, abs_spread_pct=0.44) == (False, "spread_below")
    assert _gates(t2, has_position=True) == (False, "position_exists")

    blocks = BlockState()
    blocks.block("ETH", "T2", 5_000)
    assert _gates(t2, blocks=blocks) == (False, "blocked")


def test_entry_window_is_half_open() -> None:
    from spreadbot.config.profiles import three_tier_table

    t3 = three_tier_table(0.1, 0.2, 0.3).get("T3")
    assert _gates(t3, seconds_into_window=99.9)[1] == "before_entry"
    assert _gates(t3, seconds_into_window=100.0) == (True, "ok")
    assert _gates(t3, seconds_into_window=180.0)[1] == "after_entry"

from spreadbot.domain.clock import WindowClock
from spreadbot.tests.fakes import T0


def test_window_boundaries_mid_window() -> None:
    clock = WindowClock(window_minutes=5)
    now = T0 + 150_000
    assert clock.window_start_ms(now) == T0
    assert clock.window_end_ms(now) == T0 + 300_000
    assert clock.seconds_into_window(now) == 150.0
    assert clock.minutes_left(now) == 2.5
    assert clock.ms_until_window_end(now) == 150_000


def test_exact_boundary_starts_new_window() -> None:
    clock = WindowClock(window_minutes=5)
    assert clock.window_start_ms(T0) == T0
    assert clock.seconds_into_window(T0) == 0.0
    assert clock.window_key(T0 - 1) != clock.window_key(T0)


def test_window_key_stable_within_window() -> None:
    clock = WindowClock(window_minutes=5)
    keys = {clock.window_key(T0 + off) for off in (0, 1, 60_000, 299_999)}
    assert keys == {(T0 + 300_000) // 1000}


def test_market_id_anchors() -> None:
    now = T0 + 42_000
    assert WindowClock(5).market_id("ETH", now) == f"eth-updown-5m-{(T0 + 300_000) // 1000}"
    assert WindowClock(5, slug_anchor="start").market_id("ETH", now) == f"eth-updown-5m-{T0 // 1000}"
    assert WindowClock(15).market_id("btc", now).startswith("btc-updown-15m-")


def test_market_id_for_key_matches_live_id() -> None:
    clock = WindowClock(5, slug_anchor="start")
    now = T0 + 150_000
    assert clock.market_id_for_key("SOL", clock.window_key(now)) == clock.market_id("SOL", now)

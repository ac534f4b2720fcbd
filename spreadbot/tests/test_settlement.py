import asyncio

import pytest

from spreadbot.domain.models import DOWN, UP, Position
from spreadbot.domain.positions import PositionBook
from spreadbot.settlement.manager import OUTCOME_UNKNOWN, SettlementManager, settled_direction
from spreadbot.settlement.risk import RiskLedger
from spreadbot.tests.fakes import T0, FakeMarkets, FakeOrders

KEY = (T0 + 300_000) // 1000
AFTER = T0 + 301_000


def _position(direction: str = UP, tier: str = "T2", order_id: str = "DRY-ETH-T2-1", shares: float = 5.0) -> Position:
    return Position(
        tier=tier,
        asset="ETH",
        window_key=KEY,
        direction=direction,
        limit_price=0.97,
        size_usdc=5.0,
        shares=shares,
        order_id=order_id,
        signed_spread_pct=0.5,
        entered_at_ms=T0 + 150_000,
        market_id=f"eth-updown-5m-{KEY}",
        window_open_price=100.0,
    )


def _book(*positions: Position) -> PositionBook:
    book = PositionBook()
    for p in positions:
        book.add(p)
    return book


def _at(price: float, window_key: int = KEY):
    """Settlement price known only for one window, as the engine records it."""

    def _price(p: Position) -> tuple[float, bool]:
        return (price, True) if int(p.window_key) == window_key else (0.0, False)

    return _price


def test_settled_direction_ties_go_up() -> None:
    assert settled_direction(100.0, 100.0) == UP
    assert settled_direction(100.01, 100.0) == UP
    assert settled_direction(99.99, 100.0) == DOWN


def test_win_books_pnl_once() -> None:
    ledger = RiskLedger.fresh(100.0)
    mgr = SettlementManager(ledger)
    book = _book(_position())
    out = asyncio.run(mgr.settle(book, AFTER, _at(101.0)))
    assert [r.outcome for r in out] == ["win"]
    assert out[0].pnl == pytest.approx(0.15)
    assert ledger.state.bankroll == pytest.approx(100.15)
    assert len(book) == 0

    again = asyncio.run(mgr.settle(book, AFTER + 60_000, _at(101.0)))
    assert again == []
    assert ledger.state.bankroll == pytest.approx(100.15)


def test_loss_books_full_stake() -> None:
    ledger = RiskLedger.fresh(100.0)
    out = asyncio.run(SettlementManager(ledger).settle(_book(_position()), AFTER, _at(99.0)))
    assert out[0].outcome == "loss"
    assert out[0].pnl == pytest.approx(-4.85)
    assert ledger.state.consecutive_losses == 1


def test_open_window_positions_wait() -> None:
    book = _book(_position())
    out = asyncio.run(SettlementManager(RiskLedger.fresh(100.0)).settle(book, T0 + 299_000, _at(101.0)))
    assert out == []
    assert len(book) == 1


def test_missing_settle_price_stays_pending_until_timeout() -> None:
    mgr = SettlementManager(RiskLedger.fresh(100.0), resolution_timeout_ms=600_000)
    book = _book(_position())
    missing = lambda p: (0.0, False)  # noqa: E731
    assert asyncio.run(mgr.settle(book, AFTER, missing)) == []
    assert len(book) == 1
    out = asyncio.run(mgr.settle(book, KEY * 1000 + 600_000, missing))
    assert [r.outcome for r in out] == [OUTCOME_UNKNOWN]
    assert len(book) == 0
    assert mgr.ledger.state.bankroll == 100.0


def test_unfilled_order_is_no_fill() -> None:
    ledger = RiskLedger.fresh(100.0)
    mgr = SettlementManager(ledger, orders=FakeOrders(order_info={"size_matched": "0"}))
    out = asyncio.run(mgr.settle(_book(_position(order_id="0xabc")), AFTER, _at(101.0)))
    assert out[0].outcome == "no_fill"
    assert ledger.state.bankroll == 100.0
    assert len(ledger.state.results) == 0


def test_partial_fill_scales_pnl() -> None:
    ledger = RiskLedger.fresh(100.0)
    mgr = SettlementManager(ledger, orders=FakeOrders(order_info={"size_matched": "2"}))
    out = asyncio.run(mgr.settle(_book(_position(order_id="0xabc")), AFTER, _at(101.0)))
    assert out[0].pnl == pytest.approx(0.06)


def test_venue_mode_uses_settled_outcome() -> None:
    ledger = RiskLedger.fresh(100.0)
    markets = FakeMarkets(closed=True, outcome_prices=(0.0, 1.0))
    mgr = SettlementManager(ledger, mode="venue", markets=markets)
    out = asyncio.run(mgr.settle(_book(_position(direction=DOWN)), AFTER, _at(101.0)))
    assert out[0].outcome == "win"
    assert out[0].method == "venue"


def test_venue_mode_pending_then_price_fallback() -> None:
    markets = FakeMarkets(closed=False)
    mgr = SettlementManager(RiskLedger.fresh(100.0), mode="venue", markets=markets, resolution_timeout_ms=600_000)
    book = _book(_position())
    assert asyncio.run(mgr.settle(book, AFTER, _at(101.0))) == []
    out = asyncio.run(mgr.settle(book, KEY * 1000 + 600_000, _at(101.0)))
    assert out[0].outcome == "win"
    assert out[0].method == "price"


def test_venue_fallback_ignores_other_windows_prices() -> None:
    ledger = RiskLedger.fresh(100.0)
    mgr = SettlementManager(ledger, mode="venue", markets=FakeMarkets(closed=False), resolution_timeout_ms=600_000)
    book = _book(_position())
    out = asyncio.run(mgr.settle(book, KEY * 1000 + 600_000, _at(101.0, window_key=KEY + 300)))
    assert out[0].outcome == OUTCOME_UNKNOWN
    assert ledger.state.bankroll == 100.0


def test_venue_mode_requires_markets() -> None:
    with pytest.raises(RuntimeError):
        SettlementManager(RiskLedger.fresh(100.0), mode="venue")
    with pytest.raises(RuntimeError):
        SettlementManager(RiskLedger.fresh(100.0), mode="oracle")


def test_loss_streak_starts_cooldown() -> None:
    ledger = RiskLedger.fresh(100.0)
    mgr = SettlementManager(ledger)
    book = _book(*[_position(tier=f"T{i}") for i in range(5)])
    asyncio.run(mgr.settle(book, AFTER, _at(99.0)))
    assert ledger.state.cooldown_until_ms == AFTER + 15 * 60_000
    assert ledger.should_trade(AFTER + 60_000) == (False, "cooldown")

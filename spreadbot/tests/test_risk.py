from spreadbot.settlement.risk import MIN_BET, PRIOR_WIN_RATE, RiskLedger


def test_prior_win_rate_until_enough_results() -> None:
    ledger = RiskLedger.fresh(100.0)
    for _ in range(9):
        ledger.record_result(True, 0.1, 0)
    assert ledger.rolling_win_rate() == PRIOR_WIN_RATE
    ledger.record_result(False, -1.0, 0)
    assert ledger.rolling_win_rate() == 0.9


def test_results_are_most_recent_first() -> None:
    ledger = RiskLedger.fresh(100.0)
    ledger.record_result(False, -1.0, 0)
    ledger.record_result(True, 0.1, 0)
    assert list(ledger.state.results) == [True, False]


def test_win_resets_streak() -> None:
    ledger = RiskLedger.fresh(100.0)
    for _ in range(4):
        assert not ledger.record_result(False, -0.5, 0)
    ledger.record_result(True, 0.1, 0)
    assert ledger.state.consecutive_losses == 0
    assert ledger.state.cooldown_until_ms == 0


def test_fifth_loss_starts_cooldown() -> None:
    ledger = RiskLedger.fresh(100.0)
    started = [ledger.record_result(False, -0.5, 1_000) for _ in range(5)]
    assert started == [False, False, False, False, True]
    assert ledger.should_trade(1_000 + 15 * 60_000 - 1) == (False, "cooldown")
    assert ledger.should_trade(1_000 + 15 * 60_000) == (True, "ok")


def test_bust_and_drawdown() -> None:
    ledger = RiskLedger.fresh(100.0)
    ledger.record_result(False, -60.0, 0)
    assert ledger.should_trade(0) == (False, "drawdown")
    ledger.record_result(False, -37.0, 0)
    assert ledger.should_trade(0) == (False, "bust")


def test_bet_size_phases() -> None:
    small = RiskLedger.fresh(150.0)
    assert small.bet_size() == MIN_BET

    mid = RiskLedger.fresh(1000.0)
    for _ in range(10):
        mid.record_result(True, 0.0, 0)
    assert mid.phase() == 2
    assert mid.bet_size() == 150.0

    cold = RiskLedger.fresh(1000.0)
    for _ in range(10):
        cold.record_result(False, 0.0, 0)
    assert cold.bet_size() == MIN_BET


def test_max_bankroll_tracks_peak() -> None:
    ledger = RiskLedger.fresh(100.0)
    ledger.record_result(True, 10.0, 0)
    ledger.record_result(False, -5.0, 0)
    assert ledger.state.max_bankroll == 110.0
    snap = ledger.snapshot()
    assert snap["bankroll"] == 105.0
    assert snap["trades"] == 2


def test_restore_from_snapshot() -> None:
    ledger = RiskLedger.fresh(100.0)
    assert ledger.restore({"bankroll": 80.0, "max_bankroll": 130.0, "consecutive_losses": 3,
                           "cooldown_until_ms": 5_000, "wallet_usdc": 12.0})
    assert ledger.state.bankroll == 80.0
    assert ledger.state.max_bankroll == 130.0
    assert ledger.state.consecutive_losses == 3
    assert ledger.should_trade(4_000) == (False, "cooldown")


def test_restore_ignores_snapshot_without_bankroll() -> None:
    ledger = RiskLedger.fresh(100.0)
    assert not ledger.restore({"wallet_usdc": 12.0})
    assert not ledger.restore({"bankroll": None})
    assert ledger.state.bankroll == 100.0
    assert ledger.state.max_bankroll == 100.0

from __future__ import annotations

from spreadbot.domain.models import RiskState

MIN_BET = 5.0
LOSS_STREAK_LIMIT = 5
LOSS_COOLDOWN_MS = 15 * 60_000
ROLLING_WINDOW = 50
MIN_RESULTS_FOR_RATE = 10
PRIOR_WIN_RATE = 0.52


class RiskLedger:
    """Bankroll accounting, loss-streak cooldown and rolling win rate."""

    def __init__(
        self,
        state: RiskState,
        *,
        min_bet: float = MIN_BET,
        loss_streak_limit: int = LOSS_STREAK_LIMIT,
        loss_cooldown_ms: int = LOSS_COOLDOWN_MS,
    ):
        self.state = state
        self.min_bet = float(min_bet)
        self.loss_streak_limit = max(1, int(loss_streak_limit))
        self.loss_cooldown_ms = int(loss_cooldown_ms)

    @classmethod
    def fresh(cls, bankroll: float, **kw) -> "RiskLedger":
        return cls(RiskState(bankroll=float(bankroll), max_bankroll=float(bankroll)), **kw)

    def phase(self) -> int:
        b = self.state.bankroll
        if b < 200:
            return 1
        if b < 5000:
            return 2
        return 3

    def rolling_win_rate(self) -> float:
        results = self.state.results
        if len(results) < MIN_RESULTS_FOR_RATE:
            return PRIOR_WIN_RATE
        recent = list(results)[:ROLLING_WINDOW]
        return sum(1 for won in recent if won) / len(recent)

    def should_trade(self, now_ms: int) -> tuple[bool, str]:
        s = self.state
        if s.bankroll < self.min_bet:
            return False, "bust"
        if int(now_ms) < s.cooldown_until_ms:
            return False, "cooldown"
        if s.bankroll < s.max_bankroll * 0.5 and s.bankroll < 200:
            return False, "drawdown"
        return True, "ok"

    def bet_size(self) -> float:
        """Win-rate scaled stake for the sizing variant; the minimum while small or cold."""
        wr = self.rolling_win_rate()
        phase = self.phase()
        if wr < 0.45 or phase == 1:
            return self.min_bet
        cap = 0.15 if phase == 2 else 0.10
        fraction = min(max(0.0, 2 * wr - 1), cap)
        bet = max(self.min_bet, float(int(self.state.bankroll * fraction)))
        return min(bet, self.state.bankroll)

    def record_result(self, won: bool, pnl: float, now_ms: int) -> bool:
        """Apply one settled trade. Returns True when this result started a cooldown."""
        s = self.state
        s.bankroll += float(pnl)
        started = False
        if won:
            s.consecutive_losses = 0
        else:
            s.consecutive_losses += 1
            if s.consecutive_losses >= self.loss_streak_limit:
                s.cooldown_until_ms = int(now_ms) + self.loss_cooldown_ms
                s.consecutive_losses = 0
                started = True
        s.results.appendleft(bool(won))
        if s.bankroll > s.max_bankroll:
            s.max_bankroll = s.bankroll
        return started

    def snapshot(self) -> dict:
        s = self.state
        return {
            "bankroll": round(s.bankroll, 4),
            "max_bankroll": round(s.max_bankroll, 4),
            "consecutive_losses": s.consecutive_losses,
            "cooldown_until_ms": s.cooldown_until_ms,
            "win_rate": round(self.rolling_win_rate(), 4),
            "trades": len(s.results),
        }

    def restore(self, saved: dict) -> bool:
        """Reload bankroll, peak, loss streak and cooldown from a saved snapshot."""
        try:
            bankroll = float(saved["bankroll"])
        except (KeyError, TypeError, ValueError):
            return False
        s = self.state
        s.bankroll = bankroll
        s.max_bankroll = max(bankroll, float(saved.get("max_bankroll") or 0.0))
        s.consecutive_losses = int(saved.get("consecutive_losses") or 0)
        s.cooldown_until_ms = int(saved.get("cooldown_until_ms") or 0)
        return True

    def summary(self) -> str:
        s = self.state
        dd = (s.max_bankroll - s.bankroll) / s.max_bankroll * 100 if s.max_bankroll > 0 else 0.0
        return (
            f"phase={self.phase()} bank=${s.bankroll:.2f} wr={self.rolling_win_rate() * 100:.1f}% "
            f"({len(s.results)} trades) dd={dd:.1f}% streak={s.consecutive_losses}"
        )

from __future__ import annotations

import asyncio
import contextlib
import signal
from dataclasses import replace

from spreadbot.config import Settings, get_profile
from spreadbot.config.profiles import EngineProfile
from spreadbot.data import BestEffort, HttpService, LocalStateStore, MarketDataService, PriceFeed, SupabaseStore
from spreadbot.domain import PositionBook, WindowClock
from spreadbot.execution.manager import ExecutionManager
from spreadbot.infra import RuntimeEventLogger, get_logger
from spreadbot.runtime.engine import SpreadEngine
from spreadbot.runtime.supervisor import LoopSupervisor
from spreadbot.settlement import RiskLedger, SettlementManager
from spreadbot.strategy import BlockState, TierEngine

ALLOWANCE_REFRESH_SEC = 900.0


def build_profile(settings: Settings) -> EngineProfile:
    profile = get_profile(settings.profile)
    if settings.position_size > 0:
        profile = replace(profile, engine=replace(profile.engine, position_size_usdc=settings.position_size))
    return profile


class App:
    """Top-level orchestrator: wires components, runs supervised loops, stops on signal."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.log = get_logger("spreadbot", settings.log_level)
        self.profile = build_profile(settings)
        self.bot = self.profile.name
        self.events = RuntimeEventLogger(settings.data_dir, bot=self.bot)
        self.supervisor = LoopSupervisor()
        self.http = HttpService(timeout_sec=settings.request_timeout_sec, log=self.log.getChild("http"))
        self.best_effort = BestEffort(self.log.getChild("store"))
        self.engine: SpreadEngine | None = None
        self.feed: PriceFeed | None = None

    def _build_store(self):
        if self.settings.store_backend == "supabase":
            return SupabaseStore(
                self.http,
                url=self.settings.supabase_url,
                key=self.settings.supabase_key,
                bot=self.bot,
                log=self.log.getChild("supabase"),
            )
        if self.settings.store_backend != "local":
            raise RuntimeError(f"Unsupported STORE_BACKEND={self.settings.store_backend}; use local or supabase")
        return LocalStateStore(self.settings.data_dir, self.bot)

    def _build_orders(self):
        if self.settings.dry_run:
            return None
        from spreadbot.execution.clob import ClobOrderClient

        return ClobOrderClient.from_settings(self.settings, log=self.log.getChild("clob"))

    def build(self) -> SpreadEngine:
        s = self.settings
        store = self._build_store()
        markets = MarketDataService(self.http, base_url=s.gamma_url, log=self.log.getChild("gamma"))
        orders = self._build_orders()
        clock = WindowClock(window_minutes=self.profile.window_minutes, slug_anchor=self.profile.slug_anchor)
        self.feed = PriceFeed(
            url=s.rtds_url,
            symbols=self.profile.symbols,
            log=self.log.getChild("feed"),
            events=self.events,
        )
        execution = ExecutionManager(
            dry_run=s.dry_run,
            markets=markets,
            orders=orders,
            confirm_on_book=s.confirm_on_book,
            log=self.log.getChild("execution"),
        )
        ledger = RiskLedger.fresh(s.bankroll)
        settlement = SettlementManager(
            ledger,
            mode=s.resolution_mode,
            markets=markets,
            orders=orders,
            resolution_timeout_ms=int(s.resolution_timeout_sec * 1000),
            log=self.log.getChild("settlement"),
            events=self.events,
        )
        tiers = TierEngine(
            self.profile.engine,
            self.profile.tables,
            blocks=BlockState(guard_scope=self.profile.early_guard_scope),
            positions=PositionBook(),
        )
        self.engine = SpreadEngine(
            profile=self.profile,
            tiers=tiers,
            clock=clock,
            feed=self.feed,
            execution=execution,
            settlement=settlement,
            ledger=ledger,
            store=store,
            best_effort=self.best_effort,
            events=self.events,
            log=self.log.getChild("engine"),
            bot=self.bot,
            tick_interval_sec=s.tick_interval_sec,
            config_refresh_sec=s.config_refresh_sec,
            status_every_ticks=s.status_every_ticks,
            sizing=s.sizing,
        )
        return self.engine

    async def _allowance_loop(self, execution: ExecutionManager) -> None:
        while True:
            if await execution.refresh_allowance():
                self.log.info("collateral allowance refreshed")
            await asyncio.sleep(ALLOWANCE_REFRESH_SEC)

    def _wallet_task(self, store) -> asyncio.Task | None:
        if self.settings.dry_run:
            return None
        from spreadbot.execution.wallet import WalletBalancePoller, build_w3, wallet_address

        address = wallet_address(self.settings.wallet_address, self.settings.private_key)

        def _on_balance(bal: float) -> None:
            self.log.info("wallet usdc=%.2f", bal)
            self.best_effort.submit("save_bankroll_state", store.save_bankroll_state({"wallet_usdc": round(bal, 4)}))

        poller = WalletBalancePoller(
            build_w3(self.settings.polygon_rpc_url),
            address,
            interval_sec=self.settings.balance_poll_sec,
            on_balance=_on_balance,
            log=self.log.getChild("wallet"),
        )
        return asyncio.create_task(self.supervisor.run_forever("wallet", poller.run, self.log), name="loop:wallet")

    def _install_signals(self, engine: SpreadEngine) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, engine.stop)

    async def run(self) -> None:
        self.log.info(
            "starting spreadbot profile=%s dry_run=%s store=%s resolution=%s",
            self.bot, self.settings.dry_run, self.settings.store_backend, self.settings.resolution_mode,
        )
        engine = self.build()
        await engine.restore_state()
        self.events.emit("engine.start", profile=self.bot, dry_run=self.settings.dry_run)
        self._install_signals(engine)

        feed = self.feed
        tasks = [
            asyncio.create_task(
                self.supervisor.run_forever("feed", feed.run, self.log, should_stop=lambda: feed.stopped),
                name="loop:feed",
            ),
            asyncio.create_task(self._allowance_loop(engine.execution), name="loop:allowance"),
        ]
        wallet = self._wallet_task(engine.store)
        if wallet is not None:
            tasks.append(wallet)
        try:
            await engine.run()
        finally:
            await feed.stop()
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.best_effort.drain()
            await engine.store.close()
            await self.http.close()
            self.events.emit("engine.stop", placements=engine.placements, open_positions=len(engine.tiers.positions))
            self.log.info("shutdown complete; %s", self.supervisor.health.summary())


def run_main(settings: Settings) -> None:
    asyncio.run(App(settings).run())

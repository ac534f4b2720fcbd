from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets

from spreadbot.domain.clock import now_ms
from spreadbot.domain.models import OPEN_LIVE, OPEN_RETRIED, OPEN_UNAVAILABLE, PriceSample, WindowOpen

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"

CHAINLINK_TOPIC = "crypto_prices_chainlink"


def _observed_at(payload: dict, received_ms: int) -> int:
    """Oracle observation time in ms; receive time when the frame carries none. Never in the future."""
    try:
        ts = int(float(payload.get("timestamp") or 0))
    except (TypeError, ValueError):
        ts = 0
    if ts <= 0:
        return received_ms
    return min(ts, received_ms)


class PriceFeed:
    """Live reference prices from the Polymarket RTDS Chainlink stream.

    Connection lifecycle is an explicit state machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> (silence | close | error) -> DISCONNECTED,
    followed by a fixed reconnect delay. Each asset has one last-write-wins cell;
    readers never get a sample older than the configured max age.

    The transport is injectable: ``connect(url)`` must return an async context
    manager yielding an object with ``send``, ``recv`` and ``close`` coroutines.
    """

    def __init__(
        self,
        *,
        url: str,
        symbols: dict[str, str],
        topic: str = CHAINLINK_TOPIC,
        spot_max_age_ms: int = 15_000,
        open_max_age_ms: int = 10_000,
        open_retry_ms: int = 120_000,
        ping_interval_sec: float = 5.0,
        reconnect_delay_sec: float = 3.0,
        silence_timeout_sec: float = 45.0,
        connect: Callable[[str], Any] | None = None,
        clock: Callable[[], int] = now_ms,
        log: logging.Logger | None = None,
        events=None,
    ):
        self.url = url
        self.symbols = {k.lower(): v for k, v in symbols.items()}
        self.assets = tuple(dict.fromkeys(self.symbols.values()))
        self.topic = topic
        self.spot_max_age_ms = int(spot_max_age_ms)
        self.open_max_age_ms = int(open_max_age_ms)
        self.open_retry_ms = int(open_retry_ms)
        self.ping_interval_sec = float(ping_interval_sec)
        self.reconnect_delay_sec = float(reconnect_delay_sec)
        self.silence_timeout_sec = float(silence_timeout_sec)
        self._connect_fn = connect
        self.clock = clock
        self.log = log or logging.getLogger("spreadbot.feed")
        self.events = events

        self.state = DISCONNECTED
        self.reconnecting = False
        self.connects = 0
        self.last_data_ms = 0
        self.cells: dict[str, PriceSample] = {}
        self._ws = None
        self._stop: asyncio.Event | None = None

        self.window_start_ms = 0
        self.opens: dict[str, WindowOpen] = {}
        self.soft_reset_assets: set[str] = set()
        self.soft_resets = 0
        self._late_join = False

    # ── stream ────────────────────────────────────────────────────────────

    def _open_transport(self):
        if self._connect_fn is not None:
            return self._connect_fn(self.url)
        return websockets.connect(
            self.url,
            additional_headers={"Origin": "https://polymarket.com"},
            ping_interval=None,
            compression=None,
        )

    def _subscribe_message(self) -> str:
        return json.dumps({"action": "subscribe", "subscriptions": [{"topic": self.topic, "type": "*"}]})

    def _silent(self) -> bool:
        return (self.clock() - self.last_data_ms) > self.silence_timeout_sec * 1000.0

    async def _pinger(self, ws) -> None:
        while True:
            await asyncio.sleep(self.ping_interval_sec)
            try:
                await ws.send(json.dumps({"action": "ping"}))
            except Exception as exc:
                self.log.debug("feed ping failed: %s", exc)
                return
            if self._silent():
                self.log.warning(
                    "feed silent for >%.0fs while open; forcing reconnect", self.silence_timeout_sec
                )
                with contextlib.suppress(Exception):
                    await ws.close(code=1012, reason="rtds-silence-timeout")
                return

    async def run_once(self) -> None:
        """One connection lifetime. Returns once the connection is gone."""
        self.state = CONNECTING
        pinger: asyncio.Task | None = None
        try:
            async with self._open_transport() as ws:
                self._ws = ws
                await ws.send(self._subscribe_message())
                self.state = CONNECTED
                self.connects += 1
                self.last_data_ms = self.clock()
                self.log.info("feed connected url=%s assets=%s", self.url, ",".join(self.assets))
                if self.events is not None:
                    self.events.emit("feed.connected", connects=self.connects)
                pinger = asyncio.create_task(self._pinger(ws))
                while not self.stopped:
                    try:
                        raw = await asyncio.wait_for(ws.recv(), timeout=self.ping_interval_sec)
                    except asyncio.TimeoutError:
                        if self._silent():
                            raise TimeoutError("feed silence timeout")
                        continue
                    self.handle_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.warning("feed disconnected: %s", exc)
            if self.events is not None:
                self.events.emit("feed.disconnected", error=str(exc))
        finally:
            if pinger is not None:
                pinger.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await pinger
            self._ws = None
            self.state = DISCONNECTED

    async def reconnect_after_delay(self) -> bool:
        """Wait the reconnect delay. Returns False if a reconnect is already pending."""
        if self.reconnecting:
            return False
        self.reconnecting = True
        try:
            stop = self._stop_event()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.reconnect_delay_sec)
        finally:
            self.reconnecting = False
        return True

    async def run(self) -> None:
        self._stop_event()
        while not self.stopped:
            await self.run_once()
            if self.stopped:
                break
            await self.reconnect_after_delay()

    def _stop_event(self) -> asyncio.Event:
        if self._stop is None:
            self._stop = asyncio.Event()
        return self._stop

    @property
    def stopped(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    async def stop(self) -> None:
        self._stop_event().set()
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

    def handle_message(self, raw: Any, now: int | None = None) -> int:
        """Apply one frame. Returns how many price cells it updated."""
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", "ignore")
        if not raw:
            return 0
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            return 0
        ts = self.clock() if now is None else int(now)
        applied = 0
        for ev in msg if isinstance(msg, list) else [msg]:
            if not isinstance(ev, dict) or str(ev.get("topic", "")).lower() != self.topic:
                continue
            payload = ev.get("payload") or {}
            for p in payload if isinstance(payload, list) else [payload]:
                if not isinstance(p, dict):
                    continue
                asset = self.symbols.get(str(p.get("symbol", "") or "").lower())
                if asset is None:
                    continue
                try:
                    value = float(p.get("value") or 0)
                except (TypeError, ValueError):
                    continue
                if value <= 0:
                    continue
                self.cells[asset] = PriceSample(asset=asset, price=value, observed_at_ms=_observed_at(p, ts))
                applied += 1
        if applied:
            self.last_data_ms = ts
        return applied

    # ── reads ─────────────────────────────────────────────────────────────

    def fresh_price(self, asset: str, max_age_ms: int, now: int | None = None) -> tuple[float, bool]:
        now = self.clock() if now is None else int(now)
        sample = self.cells.get(asset)
        if sample is None or not sample.is_fresh(now, max_age_ms):
            return 0.0, False
        return sample.price, True

    def current_price(self, asset: str, now: int | None = None) -> tuple[float, bool]:
        return self.fresh_price(asset, self.spot_max_age_ms, now)

    def is_live(self, asset: str, now: int | None = None) -> bool:
        return self.current_price(asset, now)[1]

    def age_ms(self, asset: str, now: int | None = None) -> int | None:
        sample = self.cells.get(asset)
        if sample is None:
            return None
        return sample.age_ms(self.clock() if now is None else int(now))

    # ── window open ───────────────────────────────────────────────────────

    def begin_window(self, start_ms: int, now: int | None = None) -> dict[str, WindowOpen]:
        """Capture fresh opens for a new window. Joining more than the retry period late skips it."""
        now = self.clock() if now is None else int(now)
        self.window_start_ms = int(start_ms)
        self.opens = {}
        self.soft_reset_assets = set()
        self._late_join = (now - self.window_start_ms) > self.open_retry_ms
        if self._late_join:
            self.log.info("joined window %d late; no open capture this window", self.window_start_ms)
            self.opens = {a: WindowOpen(None, OPEN_UNAVAILABLE) for a in self.assets}
            return dict(self.opens)
        for asset in self.assets:
            price, ok = self.fresh_price(asset, self.open_max_age_ms, now)
            self.opens[asset] = WindowOpen(price, OPEN_LIVE) if ok else WindowOpen(None, OPEN_UNAVAILABLE)
        return dict(self.opens)

    def window_open(self, asset: str) -> WindowOpen:
        return self.opens.get(asset, WindowOpen(None, OPEN_UNAVAILABLE))

    def window_open_price(self, asset: str, now: int | None = None) -> tuple[float, bool]:
        now = self.clock() if now is None else int(now)
        current = self.opens.get(asset)
        if current is not None and current.ok:
            return float(current.price), True
        if self._late_join or asset in self.soft_reset_assets:
            return 0.0, False
        if now - self.window_start_ms < self.open_retry_ms:
            price, ok = self.fresh_price(asset, self.open_max_age_ms, now)
            if ok:
                self.opens[asset] = WindowOpen(price, OPEN_RETRIED)
                self.log.info("%s window open captured on retry: %.6f", asset, price)
                return price, True
            return 0.0, False
        self._soft_reset(asset, now)
        return 0.0, False

    def _soft_reset(self, asset: str, now: int) -> None:
        self.soft_reset_assets.add(asset)
        self.soft_resets += 1
        self.opens[asset] = WindowOpen(None, OPEN_UNAVAILABLE)
        self.log.warning(
            "%s no window open after %.0fs; soft reset, skipping window %d",
            asset,
            self.open_retry_ms / 1000.0,
            self.window_start_ms,
        )
        if self.events is not None:
            self.events.emit(
                "window.soft_reset",
                asset=asset,
                window_start_ms=self.window_start_ms,
                feed_state=self.state,
                age_ms=self.age_ms(asset, now),
            )

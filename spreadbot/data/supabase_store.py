"""
Supabase (PostgREST) backend for the engine's configuration/state store.

Tables (keyed by bot name):
  tier_config   bot, config jsonb           -- flat override keys, e.g. eth_t1_spread
  bot_control   bot, emergency_off bool
  bot_state     bot, bankroll..., blocks jsonb
  positions     one row per accepted order
  error_log     bot, error, context jsonb
"""

from __future__ import annotations

import logging
import time
from typing import Any

from spreadbot.data.http_service import HttpService
from spreadbot.data.store import StateStore

LEDGER_COLUMNS = "bankroll,max_bankroll,consecutive_losses,cooldown_until_ms,wallet_usdc"


class SupabaseStore(StateStore):
    def __init__(self, http: HttpService, *, url: str, key: str, bot: str, log=None):
        if not url or not key:
            raise RuntimeError("STORE_BACKEND=supabase requires SUPABASE_URL and SUPABASE_KEY")
        self.http = http
        self.base = url.rstrip("/") + "/rest/v1"
        self.key = key
        self.bot = bot
        self.log = log or logging.getLogger("spreadbot.supabase")

    def _headers(self, *, upsert: bool = False, read: bool = False) -> dict[str, str]:
        prefer = "return=minimal"
        if read:
            prefer = "return=representation"
        elif upsert:
            prefer = "return=minimal, resolution=merge-duplicates"
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
            "Prefer": prefer,
        }

    async def _select_one(self, table: str, columns: str) -> dict[str, Any]:
        rows = await self.http.get_json(
            f"{self.base}/{table}",
            params={"select": columns, "bot": f"eq.{self.bot}", "limit": "1"},
            headers=self._headers(read=True),
            cache_ttl=0.0,
        )
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        return {}

    async def _insert(self, table: str, row: dict[str, Any], *, upsert: bool = False) -> None:
        params = {"on_conflict": "bot"} if upsert else None
        await self.http.send_json(
            "POST", f"{self.base}/{table}", params=params, payload=row, headers=self._headers(upsert=upsert)
        )

    async def load_tier_config(self) -> dict[str, Any]:
        row = await self._select_one("tier_config", "config")
        cfg = row.get("config") or {}
        if not isinstance(cfg, dict):
            raise RuntimeError("tier_config.config is not an object")
        return cfg

    async def is_emergency_paused(self) -> bool:
        row = await self._select_one("bot_control", "emergency_off")
        return bool(row.get("emergency_off", False))

    async def set_emergency_paused(self, paused: bool) -> None:
        await self._insert("bot_control", {"bot": self.bot, "emergency_off": bool(paused)}, upsert=True)

    async def log_position(self, record: dict[str, Any]) -> None:
        await self._insert("positions", record)

    async def log_error(self, err: str, context: dict[str, Any]) -> None:
        await self._insert("error_log", {"bot": self.bot, "error": err[:2000], "context": context})

    async def save_bankroll_state(self, state: dict[str, Any]) -> None:
        # merge-duplicates updates only the columns sent
        await self._insert("bot_state", {"bot": self.bot, "updated_at_ms": int(time.time() * 1000), **state}, upsert=True)

    async def load_bankroll_state(self) -> dict[str, Any]:
        return await self._select_one("bot_state", LEDGER_COLUMNS)

    async def load_blocks(self) -> dict[str, Any]:
        row = await self._select_one("bot_state", "blocks")
        return row.get("blocks") or {}

    async def save_blocks(self, snapshot: dict[str, Any]) -> None:
        await self._insert("bot_state", {"bot": self.bot, "blocks": snapshot}, upsert=True)

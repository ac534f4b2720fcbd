from __future__ import annotations

import asyncio
import logging
import re

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    OrderType,
    PartialCreateOrderOptions,
)
from py_clob_client.constants import POLYGON

from spreadbot.config.settings import Settings


def _tick_literal(tick_size: float) -> str:
    # the SDK expects one of "0.1", "0.01", "0.001", "0.0001"
    return f"{tick_size:.4f}".rstrip("0")


class ClobOrderClient:
    """Async facade over the synchronous py-clob-client SDK."""

    def __init__(self, clob: ClobClient, *, log: logging.Logger | None = None):
        self.clob = clob
        self.log = log or logging.getLogger("spreadbot.clob")

    @classmethod
    def from_settings(cls, settings: Settings, *, log: logging.Logger | None = None) -> "ClobOrderClient":
        log = log or logging.getLogger("spreadbot.clob")
        key = settings.private_key
        if not settings.wallet_address:
            raise RuntimeError("Missing POLY_ADDRESS (wallet address)")
        key_hex = key[2:] if key.startswith("0x") else key
        if key and not re.fullmatch(r"[0-9a-fA-F]{64}", key_hex):
            raise RuntimeError("POLY_PRIVATE_KEY format invalid (expected 64 hex chars)")
        if not key:
            raise RuntimeError("Missing POLY_PRIVATE_KEY (needed to sign orders)")
        clob = ClobClient(
            host=settings.clob_host,
            key=key,
            chain_id=POLYGON,
            signature_type=settings.signature_type,
            funder=settings.wallet_address,
        )
        try:
            if settings.has_api_creds:
                creds = ApiCreds(
                    api_key=settings.api_key,
                    api_secret=settings.api_secret,
                    api_passphrase=settings.api_passphrase,
                )
            else:
                creds = clob.create_or_derive_api_creds()
            clob.set_api_creds(creds)
        except Exception as exc:
            raise RuntimeError("CLOB authentication failed (invalid/missing key or API creds)") from exc
        log.info("clob api creds ok: %s...", str(creds.api_key)[:8])
        return cls(clob, log=log)

    async def _call(self, fn):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def place_limit_order(
        self,
        token_id: str,
        price: float,
        size: float,
        *,
        tick_size: float,
        neg_risk: bool = False,
        side: str = "BUY",
    ) -> dict:
        order_args = OrderArgs(token_id=token_id, price=float(price), size=float(size), side=side)
        options = PartialCreateOrderOptions(tick_size=_tick_literal(tick_size), neg_risk=bool(neg_risk))
        signed = await self._call(lambda: self.clob.create_order(order_args, options))
        resp = await self._call(lambda: self.clob.post_order(signed, OrderType.GTC))
        return resp if isinstance(resp, dict) else {"raw": resp}

    async def refresh_collateral_allowance(self):
        return await self._call(
            lambda: self.clob.update_balance_allowance(BalanceAllowanceParams(asset_type=AssetType.COLLATERAL))
        )

    async def get_order(self, order_id: str) -> dict:
        info = await self._call(lambda: self.clob.get_order(order_id))
        return info if isinstance(info, dict) else {}

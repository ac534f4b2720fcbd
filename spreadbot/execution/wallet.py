from __future__ import annotations

import asyncio
import logging

from eth_account import Account
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

USDC_E_ADDR = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
USDC_DECIMALS = 6
ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


def wallet_address(address: str, private_key: str) -> str:
    """Configured address, or the one derived from the signing key."""
    if address:
        return Web3.to_checksum_address(address)
    if private_key:
        return Account.from_key(private_key).address
    raise RuntimeError("Missing POLY_ADDRESS and POLY_PRIVATE_KEY; cannot determine wallet")


def build_w3(rpc: str, timeout: int = 6) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": timeout}))
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


class WalletBalancePoller:
    """Reads on-chain USDC.e balance periodically and hands it to a callback."""

    def __init__(self, w3: Web3, address: str, *, interval_sec: float = 900.0, on_balance=None,
                 log: logging.Logger | None = None):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.interval_sec = float(interval_sec)
        self.on_balance = on_balance
        self.log = log or logging.getLogger("spreadbot.wallet")
        self.contract = w3.eth.contract(address=Web3.to_checksum_address(USDC_E_ADDR), abi=ERC20_ABI)
        self.last_balance: float | None = None

    async def read_balance(self) -> float:
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, lambda: self.contract.functions.balanceOf(self.address).call())
        return int(raw) / (10 ** USDC_DECIMALS)

    async def poll_once(self) -> float | None:
        try:
            bal = await self.read_balance()
        except Exception as exc:
            self.log.warning("wallet balance read failed: %s", exc)
            return None
        self.last_balance = bal
        if self.on_balance is not None:
            self.on_balance(bal)
        return bal

    async def run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval_sec)

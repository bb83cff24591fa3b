"""
Signs and broadcasts ledger writes for one account.

Writes from the same account are serialized: the pending nonce is read and
the raw transaction broadcast under a per-address lock, so concurrent link
runs sharing the bot key never reuse a nonce. Receipt waits happen outside
the lock.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Dict

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3

logger = logging.getLogger(__name__)

FALLBACK_GAS = 250_000

# event loop -> {address: lock}; asyncio locks must not cross loops
_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def account_lock(address: str) -> asyncio.Lock:
    per_loop = _LOCKS.setdefault(asyncio.get_running_loop(), {})
    return per_loop.setdefault(address.lower(), asyncio.Lock())


class Signer:
    def __init__(self, w3: AsyncWeb3, account: LocalAccount):
        self._w3 = w3
        self._account = account

    @classmethod
    def from_key(cls, w3: AsyncWeb3, private_key: str) -> "Signer":
        if not private_key:
            raise RuntimeError("BOT_PRIVATE_KEY not set")
        return cls(w3, Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    async def balance(self) -> int:
        return await self._w3.eth.get_balance(self.address)

    async def _apply_fees(self, tx: dict):
        try:
            block = await self._w3.eth.get_block("latest")
            priority = (await self._w3.eth.max_priority_fee) * 150 // 100
            tx["type"] = 2
            tx["maxFeePerGas"] = block["baseFeePerGas"] + priority
            tx["maxPriorityFeePerGas"] = priority
        except Exception as e:
            logger.debug("EIP-1559 fees unavailable, using legacy gas price: %s", e)
            tx.pop("type", None)
            tx.pop("maxFeePerGas", None)
            tx.pop("maxPriorityFeePerGas", None)
            tx["gasPrice"] = (await self._w3.eth.gas_price) * 120 // 100

    async def send_transaction(self, tx: dict) -> str:
        """Fill fees/nonce/chain id, sign, broadcast; returns the 0x tx hash."""
        tx = dict(tx)
        tx.pop("gasPrice", None)
        tx.pop("maxFeePerGas", None)
        tx.pop("maxPriorityFeePerGas", None)
        tx["from"] = self.address

        async with account_lock(self.address):
            await self._apply_fees(tx)
            tx["nonce"] = await self._w3.eth.get_transaction_count(self.address, "pending")
            tx["chainId"] = await self._w3.eth.chain_id

            if "gas" not in tx:
                try:
                    tx["gas"] = await self._w3.eth.estimate_gas(tx)
                except Exception as e:
                    logger.warning("Gas estimation failed, using %d: %s", FALLBACK_GAS, e)
                    tx["gas"] = FALLBACK_GAS

            tx.pop("from", None)
            signed = self._account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)

        return Web3.to_hex(tx_hash)

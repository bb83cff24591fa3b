"""
Async client for the on-chain knowledge graph (MultiVault).

Reads are plain contract calls; writes are built here, routed through a
WriteRoute, signed by a Signer, and confirmed with `wait`. Nothing is cached:
every call goes to the ledger.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from .abi import FEE_PROXY_ABI, MULTIVAULT_ABI
from .signer import Signer
from .write_route import DirectRoute, ProxyRoute

logger = logging.getLogger(__name__)

ATOM_GAS = 500_000
TRIPLE_GAS = 800_000
RECEIPT_TIMEOUT = 120


@dataclass(frozen=True)
class Confirmation:
    tx_hash: str
    success: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    # receipt wait timed out; the write may still land
    pending: bool = False


class GraphClient:
    def __init__(
        self,
        w3: AsyncWeb3,
        multivault_address: str,
        signer: Signer,
        route=None,
        *,
        atom_gas: int = ATOM_GAS,
        triple_gas: int = TRIPLE_GAS,
        receipt_timeout: int = RECEIPT_TIMEOUT,
    ):
        self._w3 = w3
        self._mv = w3.eth.contract(
            address=Web3.to_checksum_address(multivault_address), abi=MULTIVAULT_ABI
        )
        self._signer = signer
        self._route = route or DirectRoute(self._mv)
        self._atom_gas = atom_gas
        self._triple_gas = triple_gas
        self._receipt_timeout = receipt_timeout

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        multivault_address: str,
        private_key: str,
        *,
        proxy_address: str = "",
        curve_id: int = 1,
        **kwargs,
    ) -> "GraphClient":
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        signer = Signer.from_key(w3, private_key)
        client = cls(w3, multivault_address, signer, **kwargs)
        if proxy_address:
            proxy = w3.eth.contract(
                address=Web3.to_checksum_address(proxy_address), abi=FEE_PROXY_ABI
            )
            client._route = ProxyRoute(client._mv, proxy, curve_id=curve_id)
        logger.info(
            "Graph client ready: signer=%s route=%s", signer.address, client._route.name
        )
        return client

    @property
    def signer(self) -> Signer:
        return self._signer

    @property
    def route_name(self) -> str:
        return self._route.name

    # ────────────────────────────────────────────────────────────
    # Reads
    # ────────────────────────────────────────────────────────────

    async def node_id(self, payload: bytes) -> bytes:
        return bytes(await self._mv.functions.calculateAtomId(payload).call())

    async def edge_id(self, subject_id: bytes, predicate_id: bytes, object_id: bytes) -> bytes:
        return bytes(
            await self._mv.functions.calculateTripleId(subject_id, predicate_id, object_id).call()
        )

    async def exists(self, term_id: bytes) -> bool:
        return bool(await self._mv.functions.isTermCreated(term_id).call())

    async def is_atom(self, term_id: bytes) -> bool:
        return bool(await self._mv.functions.isAtom(term_id).call())

    async def node_cost(self) -> int:
        return int(await self._mv.functions.getAtomCost().call())

    async def edge_cost(self) -> int:
        return int(await self._mv.functions.getTripleCost().call())

    # ────────────────────────────────────────────────────────────
    # Writes
    # ────────────────────────────────────────────────────────────

    async def _ensure_route(self, receiver: str):
        approval = await self._route.approval_tx(self._signer, receiver)
        if approval is None:
            return
        tx_hash = await self._signer.send_transaction(approval)
        confirmation = await self.wait(tx_hash)
        if not confirmation.success:
            raise RuntimeError(f"Proxy approval failed. TX: {tx_hash}")

    async def _submit(self, fn, value: int, gas: int) -> str:
        tx = await fn.build_transaction({
            "from": self._signer.address,
            "value": value,
            "gas": gas,
        })
        return await self._signer.send_transaction(tx)

    async def create_nodes(
        self,
        payloads: Sequence[bytes],
        deposits: Sequence[int],
        receiver: Optional[str] = None,
    ) -> str:
        if len(payloads) != len(deposits):
            raise ValueError("payloads and deposits must have the same length")
        receiver = receiver or self._signer.address
        await self._ensure_route(receiver)
        fn, value = await self._route.create_atoms(receiver, payloads, deposits)
        tx_hash = await self._submit(fn, value, self._atom_gas)
        logger.info("Atom TX sent: %s (value=%d)", tx_hash, value)
        return tx_hash

    async def create_edges(
        self,
        subject_ids: Sequence[bytes],
        predicate_ids: Sequence[bytes],
        object_ids: Sequence[bytes],
        deposits: Sequence[int],
        receiver: Optional[str] = None,
    ) -> str:
        if not (len(subject_ids) == len(predicate_ids) == len(object_ids) == len(deposits)):
            raise ValueError("subject/predicate/object ids and deposits must align")
        receiver = receiver or self._signer.address
        await self._ensure_route(receiver)
        fn, value = await self._route.create_triples(
            receiver, subject_ids, predicate_ids, object_ids, deposits
        )
        tx_hash = await self._submit(fn, value, self._triple_gas)
        logger.info("Triple TX sent: %s (value=%d)", tx_hash, value)
        return tx_hash

    async def wait(self, tx_hash: str) -> Confirmation:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except TimeExhausted:
            logger.warning("Receipt timeout after %ds: %s", self._receipt_timeout, tx_hash)
            return Confirmation(tx_hash=tx_hash, success=False, pending=True)

        ok = receipt["status"] == 1
        if not ok:
            logger.warning("TX REVERTED: tx=%s gasUsed=%d", tx_hash, receipt["gasUsed"])
        return Confirmation(
            tx_hash=tx_hash,
            success=ok,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )

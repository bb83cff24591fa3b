"""
Where atom/triple writes are sent.

DirectRoute calls MultiVault itself. ProxyRoute calls a fee-collecting proxy
that deposits on behalf of `receiver`; it needs the receiver to have approved
the proxy for deposits on MultiVault first.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from web3 import Web3

logger = logging.getLogger(__name__)

# MultiVault approval types
APPROVAL_DEPOSIT = 1
APPROVAL_BOTH = 3


class RouteError(RuntimeError):
    pass


class DirectRoute:
    name = "direct"

    def __init__(self, multivault):
        self._mv = multivault

    async def approval_tx(self, signer, receiver: str) -> Optional[dict]:
        return None

    async def create_atoms(
        self, receiver: str, payloads: Sequence[bytes], assets: Sequence[int]
    ) -> Tuple[object, int]:
        fn = self._mv.functions.createAtoms(list(payloads), list(assets))
        return fn, sum(assets)

    async def create_triples(
        self,
        receiver: str,
        subject_ids: Sequence[bytes],
        predicate_ids: Sequence[bytes],
        object_ids: Sequence[bytes],
        assets: Sequence[int],
    ) -> Tuple[object, int]:
        fn = self._mv.functions.createTriples(
            list(subject_ids), list(predicate_ids), list(object_ids), list(assets)
        )
        return fn, sum(assets)


class ProxyRoute:
    name = "proxy"

    def __init__(self, multivault, proxy, curve_id: int = 1):
        self._mv = multivault
        self._proxy = proxy
        self._curve_id = curve_id

    async def _total_value(self, assets: List[int]) -> int:
        total = sum(assets)
        fee = await self._proxy.functions.calculateDepositFee(len(assets), total).call()
        base = await self._proxy.functions.baseFee().call()
        return total + fee + base

    async def approval_tx(self, signer, receiver: str) -> Optional[dict]:
        """
        Transaction approving the proxy for deposits, or None when the
        receiver already approved it. Only the receiver can approve.
        """
        receiver = Web3.to_checksum_address(receiver)
        current = await self._mv.functions.approvals(receiver, self._proxy.address).call()
        if current in (APPROVAL_DEPOSIT, APPROVAL_BOTH):
            return None
        if receiver.lower() != signer.address.lower():
            raise RouteError(
                f"{receiver} has not approved fee proxy {self._proxy.address} for deposits"
            )
        logger.info("Approving fee proxy %s for %s", self._proxy.address, receiver)
        return await self._mv.functions.approve(
            self._proxy.address, APPROVAL_DEPOSIT
        ).build_transaction({"from": signer.address, "value": 0})

    async def create_atoms(self, receiver, payloads, assets):
        assets = list(assets)
        fn = self._proxy.functions.createAtoms(
            Web3.to_checksum_address(receiver), list(payloads), assets, self._curve_id
        )
        return fn, await self._total_value(assets)

    async def create_triples(self, receiver, subject_ids, predicate_ids, object_ids, assets):
        assets = list(assets)
        fn = self._proxy.functions.createTriples(
            Web3.to_checksum_address(receiver),
            list(subject_ids),
            list(predicate_ids),
            list(object_ids),
            assets,
            self._curve_id,
        )
        return fn, await self._total_value(assets)

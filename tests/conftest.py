from __future__ import annotations

import hashlib
from typing import Dict, List, Optional

import pytest
from web3 import Web3

from chain.graph import Confirmation
from config import PipelineSettings
from oauth import VerificationResult
from pipeline import ClaimPipeline

WALLET = Web3.to_checksum_address("0x" + "ab" * 20)
OTHER_WALLET = Web3.to_checksum_address("0x" + "cd" * 20)

NODE_COST = 10
EDGE_COST = 20


def atom_id(payload: bytes) -> bytes:
    return hashlib.sha256(b"atom:" + payload).digest()


def triple_id(s: bytes, p: bytes, o: bytes) -> bytes:
    return hashlib.sha256(b"triple:" + s + p + o).digest()


class FakeSigner:
    def __init__(self, address: str = "0x" + "11" * 20, balance: int = 10**18):
        self.address = Web3.to_checksum_address(address)
        self._balance = balance

    async def balance(self) -> int:
        return self._balance


class FakeGraph:
    """In-memory ledger with the GraphClient surface."""

    route_name = "direct"

    def __init__(self):
        self.signer = FakeSigner()
        self.terms = set()
        self.atoms = set()
        self.reads: List[str] = []
        self.writes: List[tuple] = []
        self._pending: Dict[str, tuple] = {}
        self._tx = 0
        # knobs
        self.revert_atoms = set()          # payloads whose atom tx reverts
        self.revert_edges = False          # triple tx reverts
        self.concurrent_atoms = set()      # payloads created by someone else mid-run
        self.raced_atoms = set()           # payloads another writer lands first; our tx reverts
        self.raced_edges = False           # same, for the triple
        self.edge_submit_error: Optional[Exception] = None
        self.hidden = set()                # ids exists() never reports
        self.read_error: Optional[Exception] = None

    # helpers
    def seed_atom(self, payload: bytes) -> bytes:
        term = atom_id(payload)
        self.terms.add(term)
        self.atoms.add(term)
        return term

    def seed_triple(self, s: bytes, p: bytes, o: bytes):
        self.terms.add(triple_id(s, p, o))

    def _next_tx(self) -> str:
        self._tx += 1
        return "0x" + f"{self._tx:064x}"

    # reads
    async def node_id(self, payload: bytes) -> bytes:
        self.reads.append("node_id")
        if self.read_error:
            raise self.read_error
        return atom_id(payload)

    async def edge_id(self, s: bytes, p: bytes, o: bytes) -> bytes:
        self.reads.append("edge_id")
        return triple_id(s, p, o)

    async def exists(self, term: bytes) -> bool:
        self.reads.append("exists")
        return term in self.terms and term not in self.hidden

    async def is_atom(self, term: bytes) -> bool:
        self.reads.append("is_atom")
        return term in self.atoms

    async def node_cost(self) -> int:
        self.reads.append("node_cost")
        return NODE_COST

    async def edge_cost(self) -> int:
        self.reads.append("edge_cost")
        return EDGE_COST

    # writes
    async def create_nodes(self, payloads, deposits, receiver=None) -> str:
        for payload in payloads:
            if payload in self.concurrent_atoms:
                self.seed_atom(payload)
                raise ValueError("execution reverted: MultiVault_AtomExists(0x01)")
        tx = self._next_tx()
        self.writes.append(("atoms", list(payloads), list(deposits), receiver))
        raced = any(p in self.raced_atoms for p in payloads)
        ok = not raced and not any(p in self.revert_atoms for p in payloads)
        self._pending[tx] = ("atoms", [atom_id(p) for p in payloads], ok, raced)
        return tx

    async def create_edges(self, subject_ids, predicate_ids, object_ids, deposits, receiver=None) -> str:
        if self.edge_submit_error:
            raise self.edge_submit_error
        tx = self._next_tx()
        self.writes.append(("triples", list(subject_ids), list(predicate_ids), list(object_ids), list(deposits)))
        ids = [triple_id(s, p, o) for s, p, o in zip(subject_ids, predicate_ids, object_ids)]
        ok = not (self.revert_edges or self.raced_edges)
        self._pending[tx] = ("triples", ids, ok, self.raced_edges)
        return tx

    async def wait(self, tx_hash: str) -> Confirmation:
        kind, ids, ok, landed = self._pending.pop(tx_hash)
        if ok or landed:
            self.terms.update(ids)
            if kind == "atoms":
                self.atoms.update(ids)
        return Confirmation(tx_hash=tx_hash, success=ok, block_number=100 + self._tx, gas_used=21_000)


class FakeVerifier:
    def __init__(self, results: Optional[Dict[str, VerificationResult]] = None):
        self.results = results or {}
        self.calls: List[tuple] = []

    async def __call__(self, platform, token, *, client_id=None):
        self.calls.append((platform, token, client_id))
        return self.results.get(token, VerificationResult(valid=False, error="API returned 401"))


class FakePinner:
    def __init__(self, error: Optional[Exception] = None):
        self.calls: List[tuple] = []
        self.error = error

    async def __call__(self, label: str, description: str) -> str:
        self.calls.append((label, description))
        if self.error:
            raise self.error
        return f"ipfs://bafy{len(self.calls):04d}{label}"


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def verifier():
    return FakeVerifier({
        "good-discord": VerificationResult(valid=True, user_id="123456789", username="alice"),
        "good-spotify": VerificationResult(valid=True, user_id="spotify-user", username="Alice"),
        "good-twitch": VerificationResult(valid=True, user_id="424242", username="alice_tv"),
    })


@pytest.fixture
def pinner():
    return FakePinner()


@pytest.fixture
def settings():
    return PipelineSettings(atom_deposit=1_000, triple_extra=500, verification_threshold=1)


@pytest.fixture
def pipeline(graph, pinner, settings, verifier):
    return ClaimPipeline(
        graph,
        pinner,
        settings,
        verifier=verifier,
        explorer_tx_url=lambda tx: f"https://explorer.test/tx/{tx}",
    )

"""
Minimal ABIs for the MultiVault graph contract and its optional fee proxy.

A full artifact can replace either list: drop `<Name>.json` (Foundry or
Hardhat layout, with an "abi" key) into $ABI_DIR.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_ABI_DIR = os.getenv("ABI_DIR", "")


def load_abi(contract_name: str) -> Optional[List[Dict[str, Any]]]:
    """ABI from $ABI_DIR/<contract_name>.json, or None when absent."""
    if not _ABI_DIR:
        return None
    artifact = Path(_ABI_DIR) / f"{contract_name}.json"
    if not artifact.exists():
        return None
    with artifact.open() as f:
        data = json.load(f)
    abi = data.get("abi") if isinstance(data, dict) else data
    if not abi:
        raise ValueError(f"No 'abi' key in {artifact}")
    logger.info("Loaded %s ABI from %s", contract_name, artifact)
    return abi


def _view(name, inputs, output_type):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": output_type}],
        "stateMutability": "view",
    }


def _pure(name, inputs, output_type):
    entry = _view(name, inputs, output_type)
    entry["stateMutability"] = "pure"
    return entry


MULTIVAULT_ABI = load_abi("MultiVault") or [
    _pure("calculateAtomId", [("data", "bytes")], "bytes32"),
    _pure("calculateTripleId",
          [("subjectId", "bytes32"), ("predicateId", "bytes32"), ("objectId", "bytes32")],
          "bytes32"),
    _view("isTermCreated", [("id", "bytes32")], "bool"),
    _view("isAtom", [("atomId", "bytes32")], "bool"),
    _view("getAtomCost", [], "uint256"),
    _view("getTripleCost", [], "uint256"),
    _view("approvals", [("owner", "address"), ("spender", "address")], "uint8"),
    {
        "type": "function",
        "name": "approve",
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "approvalType", "type": "uint8"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "createAtoms",
        "inputs": [
            {"name": "atomsData", "type": "bytes[]"},
            {"name": "assets", "type": "uint256[]"},
        ],
        "outputs": [{"name": "", "type": "bytes32[]"}],
        "stateMutability": "payable",
    },
    {
        "type": "function",
        "name": "createTriples",
        "inputs": [
            {"name": "subjectIds", "type": "bytes32[]"},
            {"name": "predicateIds", "type": "bytes32[]"},
            {"name": "objectIds", "type": "bytes32[]"},
            {"name": "assets", "type": "uint256[]"},
        ],
        "outputs": [{"name": "", "type": "bytes32[]"}],
        "stateMutability": "payable",
    },
]

FEE_PROXY_ABI = load_abi("FeeProxy") or [
    _view("calculateDepositFee",
          [("depositCount", "uint256"), ("totalDeposit", "uint256")], "uint256"),
    _view("baseFee", [], "uint256"),
    {
        "type": "function",
        "name": "createAtoms",
        "inputs": [
            {"name": "receiver", "type": "address"},
            {"name": "data", "type": "bytes[]"},
            {"name": "assets", "type": "uint256[]"},
            {"name": "curveId", "type": "uint256"},
        ],
        "outputs": [{"name": "atomIds", "type": "bytes32[]"}],
        "stateMutability": "payable",
    },
    {
        "type": "function",
        "name": "createTriples",
        "inputs": [
            {"name": "receiver", "type": "address"},
            {"name": "subjectIds", "type": "bytes32[]"},
            {"name": "predicateIds", "type": "bytes32[]"},
            {"name": "objectIds", "type": "bytes32[]"},
            {"name": "assets", "type": "uint256[]"},
            {"name": "curveId", "type": "uint256"},
        ],
        "outputs": [{"name": "tripleIds", "type": "bytes32[]"}],
        "stateMutability": "payable",
    },
]

"""Contract ABIs and call descriptors used by the load scenarios."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class ContractFunction:
    name: str
    abi: List[Dict[str, Any]]


@dataclass(frozen=True)
class Target:
    """A deployed contract instance, labelled for reports (e.g. ``Stylus``)."""

    label: str
    address: str


SEND_MESSAGE_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "sendMessage",
        "inputs": [{"name": "content", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
    },
]

COMPUTE_HASH_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "computeHash",
        "inputs": [{"name": "iterations", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "nonpayable",
    },
]

SEND_MESSAGE = ContractFunction("sendMessage", SEND_MESSAGE_ABI)
COMPUTE_HASH = ContractFunction("computeHash", COMPUTE_HASH_ABI)

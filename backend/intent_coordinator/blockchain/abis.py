"""Minimal ABIs for the resolver/registry contracts the coordinator talks to.

Full artifacts can be dropped into ``ABI_DIR`` as ``<ContractName>.json``
(either a bare ABI list or a hardhat/foundry artifact with an ``abi`` key).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

SYNDICATE_INTENT_RESOLVER = "SyndicateIntentResolver"
BASE_CHAIN_INTENT_RESOLVER = "BaseChainIntentResolver"
CROSS_CHAIN_RESOLVER = "CrossChainResolver"
TICKET_REGISTRY = "TicketRegistry"

# (uint8,address,uint256,address,uint32,uint32,uint256,bool,uint256,uint256,bytes)
INTENT_DATA_COMPONENTS: list[dict[str, Any]] = [
    {"internalType": "uint8", "name": "intentType", "type": "uint8"},
    {"internalType": "address", "name": "syndicateAddress", "type": "address"},
    {"internalType": "uint256", "name": "amount", "type": "uint256"},
    {"internalType": "address", "name": "tokenAddress", "type": "address"},
    {"internalType": "uint32", "name": "sourceChain", "type": "uint32"},
    {"internalType": "uint32", "name": "destinationChain", "type": "uint32"},
    {"internalType": "uint256", "name": "ticketId", "type": "uint256"},
    {"internalType": "bool", "name": "useOptimalRoute", "type": "bool"},
    {"internalType": "uint256", "name": "maxFeePercentage", "type": "uint256"},
    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
    {"internalType": "bytes", "name": "metadata", "type": "bytes"},
]
INTENT_DATA_TYPE = "(" + ",".join(c["type"] for c in INTENT_DATA_COMPONENTS) + ")"

INTENT_VIEW_COMPONENTS: list[dict[str, Any]] = [
    {"internalType": "uint8", "name": "intentType", "type": "uint8"},
    {"internalType": "address", "name": "syndicateAddress", "type": "address"},
    {"internalType": "uint256", "name": "amount", "type": "uint256"},
    {"internalType": "address", "name": "tokenAddress", "type": "address"},
    {"internalType": "uint32", "name": "sourceChain", "type": "uint32"},
    {"internalType": "uint32", "name": "destinationChain", "type": "uint32"},
    {"internalType": "uint256", "name": "ticketId", "type": "uint256"},
    {"internalType": "bool", "name": "useOptimalRoute", "type": "bool"},
    {"internalType": "uint256", "name": "maxFeePercentage", "type": "uint256"},
    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
    {"internalType": "uint256", "name": "gasPrice", "type": "uint256"},
    {"internalType": "bytes", "name": "encodedData", "type": "bytes"},
]

_SYNDICATE_INTENT_RESOLVER_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "bytes32", "name": "intentId", "type": "bytes32"},
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": False, "internalType": "uint8", "name": "intentType", "type": "uint8"},
        ],
        "name": "IntentSubmitted",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "bytes32", "name": "intentId", "type": "bytes32"},
            {"indexed": False, "internalType": "uint32", "name": "sourceChain", "type": "uint32"},
            {"indexed": False, "internalType": "uint32", "name": "destinationChain", "type": "uint32"},
        ],
        "name": "CrossChainOperationInitiated",
        "type": "event",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "intentId", "type": "bytes32"}],
        "name": "getIntent",
        "outputs": [
            {
                "components": INTENT_VIEW_COMPONENTS,
                "internalType": "struct SyndicateIntentResolver.IntentView",
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "name": "executedIntents",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "intentId", "type": "bytes32"},
            {
                "components": INTENT_DATA_COMPONENTS,
                "internalType": "struct SyndicateIntentResolver.IntentData",
                "name": "intentData",
                "type": "tuple",
            },
            {"internalType": "address", "name": "user", "type": "address"},
            {"internalType": "bytes", "name": "signature", "type": "bytes"},
        ],
        "name": "resolveIntent",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

_CROSS_CHAIN_RESOLVER_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "ticketId", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "WinningTicketDetected",
        "type": "event",
    },
]

_TICKET_REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "name": "ticketToSyndicate",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

DEFAULT_ABIS: dict[str, list[dict[str, Any]]] = {
    SYNDICATE_INTENT_RESOLVER: _SYNDICATE_INTENT_RESOLVER_ABI,
    BASE_CHAIN_INTENT_RESOLVER: _SYNDICATE_INTENT_RESOLVER_ABI,
    CROSS_CHAIN_RESOLVER: _CROSS_CHAIN_RESOLVER_ABI,
    TICKET_REGISTRY: _TICKET_REGISTRY_ABI,
}


def load_abi(name: str, abi_dir: Path | None = None) -> list[dict[str, Any]]:
    if abi_dir:
        p = Path(abi_dir) / f"{name}.json"
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
            abi = raw["abi"] if isinstance(raw, dict) else raw
            if isinstance(abi, list):
                log.info("Loaded ABI %s from %s", name, p)
                return abi
            log.warning("ABI file %s has no ABI list, using built-in", p)
        except FileNotFoundError:
            log.debug("No ABI override for %s in %s", name, abi_dir)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            log.warning("Failed to load ABI %s from %s: %s", name, p, e)
    try:
        return DEFAULT_ABIS[name]
    except KeyError as e:
        raise RuntimeError(f"no ABI for contract {name}") from e


def output_components(abi: list[dict[str, Any]], fn_name: str) -> list[dict[str, Any]]:
    for item in abi:
        if item.get("type") == "function" and item.get("name") == fn_name:
            outs = item.get("outputs") or [{}]
            return list(outs[0].get("components") or [])
    return []

"""Async contract call layer.

web3 is synchronous; every node round-trip runs in a worker thread so the
event loop keeps serving other intents. Sends from one signer on one chain
are serialized to keep nonces monotonic.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from eth_abi.abi import encode as abi_encode
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils.address import to_checksum_address

from intent_coordinator.blockchain.abis import (
    INTENT_VIEW_COMPONENTS,
    INTENT_DATA_TYPE,
    SYNDICATE_INTENT_RESOLVER,
    TICKET_REGISTRY,
    output_components,
)
from intent_coordinator.blockchain.web3_client import ChainClient, TxResult, keccak
from intent_coordinator.errors import ConfigurationError, RpcError
from intent_coordinator.validators import normalize_hex32

log = logging.getLogger(__name__)

LENS = "lens"
BASE = "base"


@dataclass(frozen=True)
class IntentDetails:
    """Resolver-side view of an intent (``getIntent``)."""

    intent_type: int
    syndicate_address: str
    amount: int
    token_address: str
    source_chain: int
    destination_chain: int
    use_optimal_route: bool
    max_fee_percentage: int
    deadline: int
    ticket_id: int = 0
    gas_price: int | None = None
    encoded_data: bytes = b""

    @classmethod
    def from_call(cls, result: Any, components: Sequence[Mapping[str, Any]] = INTENT_VIEW_COMPONENTS) -> IntentDetails:
        if isinstance(result, Mapping):
            d = dict(result)
        elif isinstance(result, (list, tuple)):
            d = {(c.get("name") or f"f{i}"): result[i] for i, c in enumerate(components) if i < len(result)}
        else:
            raise RpcError(f"unexpected getIntent result: {result!r}")
        try:
            return cls(
                intent_type=int(d.get("intentType") or 0),
                syndicate_address=to_checksum_address(d["syndicateAddress"]),
                amount=int(d["amount"]),
                token_address=to_checksum_address(d["tokenAddress"]),
                source_chain=int(d["sourceChain"]),
                destination_chain=int(d["destinationChain"]),
                use_optimal_route=bool(d.get("useOptimalRoute", True)),
                max_fee_percentage=int(d.get("maxFeePercentage") or 0),
                deadline=int(d.get("deadline") or 0),
                ticket_id=int(d.get("ticketId") or 0),
                gas_price=int(d["gasPrice"]) if d.get("gasPrice") is not None else None,
                encoded_data=bytes(d.get("encodedData") or b""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"malformed getIntent result: {e}") from e


@dataclass(frozen=True)
class IntentData:
    """``resolveIntent`` payload, in ABI tuple order."""

    intent_type: int
    syndicate_address: str
    amount: int
    token_address: str
    source_chain: int
    destination_chain: int
    ticket_id: int = 0
    use_optimal_route: bool = True
    max_fee_percentage: int = 0
    deadline: int = 0
    metadata: bytes = field(default=b"")

    def as_tuple(self) -> tuple[Any, ...]:
        return (
            int(self.intent_type),
            to_checksum_address(self.syndicate_address),
            int(self.amount),
            to_checksum_address(self.token_address),
            int(self.source_chain),
            int(self.destination_chain),
            int(self.ticket_id),
            bool(self.use_optimal_route),
            int(self.max_fee_percentage),
            int(self.deadline),
            bytes(self.metadata),
        )


def _b32(intent_id: str | bytes) -> bytes:
    return bytes.fromhex(normalize_hex32(intent_id)[2:])


def resolution_digest(intent_id: str | bytes, data: IntentData, user: str) -> bytes:
    """keccak256(abi.encode(bytes32 intentId, IntentData, address user))."""
    encoded = abi_encode(
        ["bytes32", INTENT_DATA_TYPE, "address"],
        [_b32(intent_id), data.as_tuple(), to_checksum_address(user)],
    )
    return keccak(encoded)


def sign_resolution(signer: LocalAccount, intent_id: str | bytes, data: IntentData, user: str) -> bytes:
    # personal_sign над 32 байтами дайджеста
    signed = signer.sign_message(encode_defunct(primitive=resolution_digest(intent_id, data, user)))
    return bytes(signed.signature)


class ContractGateway:
    def __init__(self, chains: Mapping[str, ChainClient], signer: LocalAccount | None = None):
        self.chains = dict(chains)
        self.signer = signer
        self._send_locks: dict[tuple[str, str], asyncio.Lock] = {}

    def chain(self, name: str) -> ChainClient:
        try:
            return self.chains[name]
        except KeyError as e:
            raise ConfigurationError(f"chain {name} is not configured") from e

    # ----------------- generic -----------------

    async def call(self, chain: str, contract: str, method: str, *args: Any) -> Any:
        return await asyncio.to_thread(self.chain(chain).call, contract, method, *args)

    async def send_transaction(
        self,
        chain: str,
        contract: str,
        method: str,
        args: tuple[Any, ...],
        signer: LocalAccount | None = None,
    ) -> TxResult:
        signer = signer or self.signer
        if signer is None:
            raise ConfigurationError("PRIVATE_KEY is required to send transactions")
        lock = self._send_locks.setdefault((chain, signer.address), asyncio.Lock())
        async with lock:
            res = await asyncio.to_thread(self.chain(chain).send_transaction, contract, method, args, signer)
        if not res.success:
            raise RpcError(f"{contract}.{method} reverted in {res.tx_hash}")
        return res

    async def block_number(self, chain: str) -> int:
        return await asyncio.to_thread(self.chain(chain).block_number)

    async def get_logs(self, chain: str, contract: str, event: str, from_block: int, to_block: int) -> list[Any]:
        return await asyncio.to_thread(self.chain(chain).get_logs, contract, event, from_block, to_block)

    async def reconnect(self, chain: str) -> None:
        await asyncio.to_thread(self.chain(chain).reconnect)

    # ----------------- resolver / registry -----------------

    async def get_intent(self, intent_id: str) -> IntentDetails:
        client = self.chain(LENS)
        res = await self.call(LENS, SYNDICATE_INTENT_RESOLVER, "getIntent", _b32(intent_id))
        comps = output_components(client.get_contract(SYNDICATE_INTENT_RESOLVER).abi, "getIntent")
        return IntentDetails.from_call(res, comps or INTENT_VIEW_COMPONENTS)

    async def is_executed(self, intent_id: str) -> bool:
        return bool(await self.call(LENS, SYNDICATE_INTENT_RESOLVER, "executedIntents", _b32(intent_id)))

    async def ticket_to_syndicate(self, ticket_id: int) -> str:
        addr = await self.call(BASE, TICKET_REGISTRY, "ticketToSyndicate", int(ticket_id))
        return to_checksum_address(addr)

    async def resolve_intent(self, intent_id: str, data: IntentData, user: str) -> TxResult:
        if self.signer is None:
            raise ConfigurationError("PRIVATE_KEY is required to resolve intents")
        signature = sign_resolution(self.signer, intent_id, data, user)
        log.info("Resolving intent %s for %s", intent_id, user)
        return await self.send_transaction(
            LENS,
            SYNDICATE_INTENT_RESOLVER,
            "resolveIntent",
            (_b32(intent_id), data.as_tuple(), to_checksum_address(user), signature),
        )

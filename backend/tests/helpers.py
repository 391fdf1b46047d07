# backend/tests/helpers.py
"""Fakes and builders shared by the unit and integration tests."""

import asyncio
from typing import Any

from eth_utils.address import to_checksum_address

from intent_coordinator.blockchain.contracts import IntentData, IntentDetails
from intent_coordinator.blockchain.web3_client import TxResult
from intent_coordinator.bridge.across_client import BridgeDeposit, BridgeStatus
from intent_coordinator.errors import RpcError
from intent_coordinator.events import (
    CrossChainOperationInitiated,
    IntentSubmitted,
    LogMeta,
    WinningTicketDetected,
)
from intent_coordinator.repos.intent_store import IntentStore
from intent_coordinator.validators import ZERO_ADDRESS

LENS_CHAIN = 232
BASE_CHAIN = 8453

USER = to_checksum_address("0x" + "11" * 20)
SYNDICATE = to_checksum_address("0x" + "22" * 20)
TOKEN = to_checksum_address("0x" + "33" * 20)

# 100 токенов с 18 знаками, больше int64
AMOUNT = "100000000000000000000"


def intent_id(n: int) -> str:
    return "0x" + f"{n:064x}"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"[::-1]


def log_meta(block: int = 100, index: int = 0, chain_id: int = LENS_CHAIN, tx: str | None = None) -> LogMeta:
    return LogMeta(chain_id=chain_id, block_number=block, tx_hash=tx or tx_hash(block * 1000 + index), log_index=index)


def submitted(iid: str, *, block: int = 100, index: int = 0, intent_type: int = 2) -> IntentSubmitted:
    return IntentSubmitted(intent_id=iid, user=USER, intent_type=intent_type, meta=log_meta(block, index))


def cross_chain(iid: str, *, block: int = 101, index: int = 0) -> CrossChainOperationInitiated:
    return CrossChainOperationInitiated(
        intent_id=iid, source_chain=LENS_CHAIN, destination_chain=BASE_CHAIN, meta=log_meta(block, index)
    )


def winning_ticket(ticket_id: int, amount: str = "5000") -> WinningTicketDetected:
    return WinningTicketDetected(ticket_id=ticket_id, amount=amount, meta=log_meta(200, 0, chain_id=BASE_CHAIN))


def details(*, cross: bool = True, deadline: int = 2_000_000_000, amount: int = int(AMOUNT)) -> IntentDetails:
    return IntentDetails(
        intent_type=2,
        syndicate_address=SYNDICATE,
        amount=amount,
        token_address=TOKEN,
        source_chain=LENS_CHAIN,
        destination_chain=BASE_CHAIN if cross else LENS_CHAIN,
        use_optimal_route=True,
        max_fee_percentage=50,
        deadline=deadline,
        ticket_id=7,
        encoded_data=b"\x01\x02",
    )


class RecordingSleep:
    """Records requested delays and yields once instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


class FakeBridge:
    def __init__(self, script: list[BridgeStatus] | None = None, default: BridgeStatus = BridgeStatus.RELAYED):
        self.script = list(script or [])
        self.default = default
        self.calls: list[BridgeDeposit] = []
        self.observer: Any = None

    async def poll_deposit_status(self, deposit: BridgeDeposit) -> BridgeStatus:
        self.calls.append(deposit)
        if self.observer is not None:
            await self.observer(deposit)
        return self.script.pop(0) if self.script else self.default

    async def close(self) -> None:
        return None


class FakeGateway:
    def __init__(self) -> None:
        self.intents: dict[str, IntentDetails] = {}
        self.syndicates: dict[int, str] = {}
        self.executed: set[str] = set()
        self.resolved: list[tuple[str, IntentData, str]] = []
        self.get_intent_calls = 0
        self.rpc_failures = 0
        self.head = 0
        self.logs: dict[str, list[dict[str, Any]]] = {}
        self.log_queries: list[tuple[str, int, int]] = []

    async def get_intent(self, iid: str) -> IntentDetails:
        self.get_intent_calls += 1
        if self.rpc_failures:
            self.rpc_failures -= 1
            raise RpcError("node unavailable")
        return self.intents[iid]

    async def block_number(self, chain: str) -> int:
        if self.rpc_failures:
            self.rpc_failures -= 1
            raise RpcError("node unavailable")
        return self.head

    async def get_logs(self, chain: str, contract: str, event: str, frm: int, to: int) -> list[dict[str, Any]]:
        self.log_queries.append((event, frm, to))
        return [lg for lg in self.logs.get(event, []) if frm <= lg["blockNumber"] <= to]

    async def is_executed(self, iid: str) -> bool:
        return iid in self.executed

    async def ticket_to_syndicate(self, ticket_id: int) -> str:
        return self.syndicates.get(ticket_id, ZERO_ADDRESS)

    async def resolve_intent(self, iid: str, data: IntentData, user: str) -> TxResult:
        self.resolved.append((iid, data, user))
        self.executed.add(iid)
        return TxResult(tx_hash=tx_hash(9999), block_number=555, gas_used=21_000, gas_fee=21_000 * 10**9, success=True)


async def create_stored_intent(store: IntentStore, iid: str, *, cross: bool = True, **kw: Any):
    fields: dict[str, Any] = dict(
        intent_id=iid,
        user=USER,
        intent_type=2,
        syndicate_address=SYNDICATE,
        amount=AMOUNT,
        token_address=TOKEN,
        source_chain_id=LENS_CHAIN,
        destination_chain_id=BASE_CHAIN if cross else LENS_CHAIN,
        deadline=2_000_000_000,
    )
    fields.update(kw)
    return await store.create_intent(**fields)


def raw_log(block: int, index: int, args: dict[str, Any]) -> dict[str, Any]:
    """Decoded log as web3 returns it from ``get_logs``."""
    return {
        "blockNumber": block,
        "logIndex": index,
        "transactionHash": bytes.fromhex(tx_hash(block * 1000 + index)[2:]),
        "args": args,
    }


def cross_chain_log(iid: str, block: int, index: int = 0) -> dict[str, Any]:
    return raw_log(
        block,
        index,
        {"intentId": bytes.fromhex(iid[2:]), "sourceChain": LENS_CHAIN, "destinationChain": BASE_CHAIN},
    )

"""Request/response mappings over the Intent Store used by the HTTP API.

No coordination happens here: API-submitted intents are stored as PENDING and
the engine picks them up once the resolver emits ``IntentSubmitted``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from eth_abi.abi import encode as abi_encode
from eth_utils.address import to_checksum_address
from web3 import Web3

from intent_coordinator.models import Intent, IntentStatus, Transaction
from intent_coordinator.repos.intent_store import IntentStore, Page
from intent_coordinator.schemas.intents import IntentSubmitIn

log = logging.getLogger(__name__)


def derive_intent_id(user: str, now_ms: int, syndicate: str, intent_type: int, amount: int | str) -> str:
    """keccak256(abi.encode(address user, uint256 nowMillis, address syndicate, uint8 type, uint256 amount))."""
    encoded = abi_encode(
        ["address", "uint256", "address", "uint8", "uint256"],
        [to_checksum_address(user), int(now_ms), to_checksum_address(syndicate), int(intent_type), int(amount)],
    )
    return "0x" + bytes(Web3.keccak(encoded)).hex()


class IntentService:
    def __init__(self, store: IntentStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    async def submit_intent(self, body: IntentSubmitIn) -> Intent:
        now_ms = int(self._clock() * 1000)
        intent_id = derive_intent_id(body.user, now_ms, body.syndicateAddress, body.intentType, body.amount)
        return await self.store.create_intent(
            intent_id=intent_id,
            user=body.user,
            intent_type=int(body.intentType),
            syndicate_address=body.syndicateAddress,
            amount=body.amount,
            token_address=body.tokenAddress,
            source_chain_id=body.sourceChainId,
            destination_chain_id=body.destinationChainId,
            use_optimal_route=body.useOptimalRoute,
            max_fee_percentage=body.maxFeePercentage,
            deadline=body.deadline,
            metadata=body.metadata,
        )

    async def get_intent(self, intent_id: str) -> tuple[Intent, list[Transaction]] | None:
        intent = await self.store.get_intent_with_transactions(intent_id)
        if intent is None:
            return None
        return intent, list(intent.transactions)

    async def get_user_intents(self, address: str, page: int = 1, limit: int = 10) -> Page:
        return await self.store.query_intents_by_user(address, page, limit)

    async def update_intent(self, intent_id: str, status: IntentStatus) -> Intent:
        """Privileged override. FAILED also fails the active bridge transfer."""
        if status == IntentStatus.FAILED:
            intent = await self.store.fail_intent(intent_id, "admin override")
        else:
            intent = await self.store.update_intent_status(intent_id, status)
        log.info("intent %s set to %s by admin", intent.intent_id, intent.status)
        return intent

"""Durable Intent/Transaction store.

All status writes go through conditional updates on the previously observed
status, so a concurrent writer on the same row can never be silently
overwritten, and terminal rows are never touched again.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from intent_coordinator.errors import (
    DuplicateBridgeTransaction,
    DuplicateIntentId,
    ForeignKeyViolation,
    IntentNotFound,
    InvariantViolation,
    TerminalStateError,
)
from intent_coordinator.models import (
    Intent,
    IntentStatus,
    ListenerCheckpoint,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from intent_coordinator.models.enums import TERMINAL_STATUSES
from intent_coordinator.validators import as_uint_string, normalize_address, normalize_hex32

log = logging.getLogger(__name__)

# intents only move forward
_STAGE = {
    IntentStatus.PENDING: 0,
    IntentStatus.EXECUTING: 1,
    IntentStatus.COMPLETED: 2,
    IntentStatus.FAILED: 2,
}


@dataclass(frozen=True)
class Page:
    items: list[Intent]
    count: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.count / self.limit) if self.limit else 0


def _active_bridge_clause(intent_pk: int) -> Any:
    return (
        (Transaction.intent_pk == intent_pk)
        & (Transaction.type == TransactionType.BRIDGE)
        & (Transaction.status != TransactionStatus.FAILED)
    )


class IntentStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def ping(self) -> None:
        async with self._sessions() as s:
            await s.execute(text("SELECT 1"))

    # ----------------------------- intents -----------------------------

    async def create_intent(
        self,
        *,
        intent_id: str,
        user: str,
        intent_type: int,
        syndicate_address: str,
        amount: int | str,
        token_address: str,
        source_chain_id: int,
        destination_chain_id: int,
        deadline: int,
        use_optimal_route: bool = True,
        max_fee_percentage: int = 0,
        status: IntentStatus = IntentStatus.PENDING,
        metadata: Mapping[str, Any] | None = None,
    ) -> Intent:
        intent_id = normalize_hex32(intent_id)
        intent = Intent(
            intent_id=intent_id,
            user=normalize_address(user),
            intent_type=int(intent_type),
            syndicate_address=normalize_address(syndicate_address),
            amount=as_uint_string(amount, "amount"),
            token_address=normalize_address(token_address),
            source_chain_id=int(source_chain_id),
            destination_chain_id=int(destination_chain_id),
            use_optimal_route=bool(use_optimal_route),
            max_fee_percentage=int(max_fee_percentage),
            deadline=int(deadline),
            status=IntentStatus(status),
            meta=dict(metadata or {}),
        )
        try:
            async with self._sessions() as s, s.begin():
                existing = await s.scalar(select(Intent.id).where(Intent.intent_id == intent_id))
                if existing is not None:
                    raise DuplicateIntentId(intent_id)
                s.add(intent)
                await s.flush()
                await s.refresh(intent)
        except IntegrityError as e:
            # unique(intent_id) lost a race with another writer
            raise DuplicateIntentId(intent_id) from e
        log.info("intent stored: intent_id=%s pk=%s status=%s", intent_id, intent.id, intent.status)
        return intent

    async def find_intent_by_id(self, intent_id: str) -> Intent | None:
        async with self._sessions() as s:
            return await s.scalar(select(Intent).where(Intent.intent_id == normalize_hex32(intent_id)))

    async def get_intent_with_transactions(self, intent_id: str) -> Intent | None:
        async with self._sessions() as s:
            stmt = (
                select(Intent)
                .where(Intent.intent_id == normalize_hex32(intent_id))
                .options(selectinload(Intent.transactions))
            )
            return await s.scalar(stmt)

    async def update_intent_status(self, intent_id: str, new_status: IntentStatus | str) -> Intent:
        new_status = IntentStatus(new_status)
        async with self._sessions() as s, s.begin():
            intent = await self._lock_intent(s, intent_id)
            await self._transition(s, intent, new_status)
        return intent

    async def fail_intent(self, intent_id: str, reason: str) -> Intent:
        """FAILED + reason in metadata; the active BRIDGE row (if any) fails with it."""
        async with self._sessions() as s, s.begin():
            intent = await self._lock_intent(s, intent_id)
            await s.execute(
                update(Transaction)
                .where(_active_bridge_clause(intent.id))
                .values(status=TransactionStatus.FAILED)
            )
            intent.meta = {**(intent.meta or {}), "failureReason": reason}
            await s.flush()
            await self._transition(s, intent, IntentStatus.FAILED)
        log.warning("intent failed: intent_id=%s reason=%s", intent.intent_id, reason)
        return intent

    async def complete_bridge(self, intent_id: str, transaction_id: int) -> Intent:
        """BRIDGE row CONFIRMED and intent COMPLETED in one database transaction."""
        async with self._sessions() as s, s.begin():
            intent = await self._lock_intent(s, intent_id)
            if intent.is_terminal:
                raise TerminalStateError(intent.intent_id, intent.status)
            tx = await s.get(Transaction, transaction_id)
            if (
                tx is None
                or tx.intent_pk != intent.id
                or tx.type != TransactionType.BRIDGE
                or tx.status == TransactionStatus.FAILED
            ):
                raise InvariantViolation(
                    f"transaction {transaction_id} is not an active BRIDGE of intent {intent.intent_id}"
                )
            tx.status = TransactionStatus.CONFIRMED
            await s.flush()
            await self._transition(s, intent, IntentStatus.COMPLETED)
        return intent

    async def list_non_terminal_intents(self) -> list[Intent]:
        async with self._sessions() as s:
            stmt = select(Intent).where(Intent.status.not_in(list(TERMINAL_STATUSES))).order_by(Intent.id)
            return list((await s.scalars(stmt)).all())

    async def query_intents_by_user(self, user: str, page: int = 1, limit: int = 10) -> Page:
        page = max(int(page), 1)
        limit = max(int(limit), 1)
        try:
            user = normalize_address(user)
        except ValueError:
            return Page(items=[], count=0, page=page, limit=limit)
        async with self._sessions() as s:
            count = await s.scalar(select(func.count()).select_from(Intent).where(Intent.user == user)) or 0
            stmt = (
                select(Intent)
                .where(Intent.user == user)
                .order_by(Intent.created_at.desc(), Intent.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            items = list((await s.scalars(stmt)).all())
        return Page(items=items, count=int(count), page=page, limit=limit)

    async def find_intents_by_syndicate(
        self, syndicate_address: str, statuses: Iterable[IntentStatus] | None = None
    ) -> list[Intent]:
        stmt = select(Intent).where(Intent.syndicate_address == normalize_address(syndicate_address))
        if statuses is not None:
            stmt = stmt.where(Intent.status.in_([IntentStatus(x) for x in statuses]))
        async with self._sessions() as s:
            return list((await s.scalars(stmt.order_by(Intent.id))).all())

    # --------------------------- transactions ---------------------------

    async def create_transaction(
        self,
        intent_id: str,
        *,
        chain_id: int,
        tx_hash: str,
        type: TransactionType | str,
        status: TransactionStatus | str = TransactionStatus.PENDING,
        block_number: int | None = None,
        gas_used: int | str | None = None,
        gas_fee: int | str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> Transaction:
        intent_id = normalize_hex32(intent_id)
        tx_type = TransactionType(type)
        try:
            async with self._sessions() as s, s.begin():
                intent_pk = await s.scalar(select(Intent.id).where(Intent.intent_id == intent_id))
                if intent_pk is None:
                    raise ForeignKeyViolation(intent_id)
                if tx_type == TransactionType.BRIDGE:
                    active = await s.scalar(select(Transaction.id).where(_active_bridge_clause(intent_pk)))
                    if active is not None:
                        raise DuplicateBridgeTransaction(intent_id)
                tx = Transaction(
                    intent_pk=intent_pk,
                    chain_id=int(chain_id),
                    tx_hash=tx_hash,
                    type=tx_type,
                    status=TransactionStatus(status),
                    block_number=block_number,
                    gas_used=as_uint_string(gas_used, "gas_used") if gas_used is not None else None,
                    gas_fee=as_uint_string(gas_fee, "gas_fee") if gas_fee is not None else None,
                    data=dict(data) if data is not None else None,
                )
                s.add(tx)
                await s.flush()
                await s.refresh(tx)
        except IntegrityError as e:
            if tx_type == TransactionType.BRIDGE:
                raise DuplicateBridgeTransaction(intent_id) from e
            raise ForeignKeyViolation(intent_id) from e
        log.info("transaction stored: intent_id=%s type=%s tx=%s", intent_id, tx_type, tx_hash)
        return tx

    async def list_transactions_for_intent(self, intent_id: str) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .join(Intent, Transaction.intent_pk == Intent.id)
            .where(Intent.intent_id == normalize_hex32(intent_id))
            .order_by(Transaction.id)
        )
        async with self._sessions() as s:
            return list((await s.scalars(stmt)).all())

    async def find_active_bridge_transaction(self, intent_id: str) -> Transaction | None:
        stmt = (
            select(Transaction)
            .join(Intent, Transaction.intent_pk == Intent.id)
            .where(
                Intent.intent_id == normalize_hex32(intent_id),
                Transaction.type == TransactionType.BRIDGE,
                Transaction.status != TransactionStatus.FAILED,
            )
        )
        async with self._sessions() as s:
            return await s.scalar(stmt)

    async def update_transaction_status(
        self,
        transaction_id: int,
        status: TransactionStatus | str,
        *,
        block_number: int | None = None,
        gas_used: int | str | None = None,
        gas_fee: int | str | None = None,
    ) -> Transaction:
        """PENDING -> CONFIRMED/FAILED only, and only while the owning intent is open."""
        new_status = TransactionStatus(status)
        async with self._sessions() as s, s.begin():
            tx = await s.get(Transaction, transaction_id, with_for_update=True)
            if tx is None:
                raise InvariantViolation(f"transaction {transaction_id} not found")
            intent = await s.get(Intent, tx.intent_pk)
            if intent is not None and intent.is_terminal:
                raise TerminalStateError(intent.intent_id, intent.status)
            observed = TransactionStatus(tx.status)
            if observed != TransactionStatus.PENDING and new_status != observed:
                raise InvariantViolation(f"transaction {transaction_id} is {observed}, cannot become {new_status}")
            tx.status = new_status
            if block_number is not None:
                tx.block_number = int(block_number)
            if gas_used is not None:
                tx.gas_used = as_uint_string(gas_used, "gas_used")
            if gas_fee is not None:
                tx.gas_fee = as_uint_string(gas_fee, "gas_fee")
            await s.flush()
            await s.refresh(tx)
        return tx

    # ---------------------------- checkpoints ----------------------------

    async def load_checkpoint(self, chain_id: int) -> int | None:
        async with self._sessions() as s:
            return await s.scalar(
                select(ListenerCheckpoint.next_block).where(ListenerCheckpoint.chain_id == int(chain_id))
            )

    async def save_checkpoint(self, chain_id: int, next_block: int) -> None:
        """Move the chain checkpoint forward; never backwards."""
        chain_id, next_block = int(chain_id), int(next_block)
        try:
            async with self._sessions() as s, s.begin():
                row = await s.get(ListenerCheckpoint, chain_id, with_for_update=True)
                if row is None:
                    s.add(ListenerCheckpoint(chain_id=chain_id, next_block=next_block))
                elif next_block > row.next_block:
                    row.next_block = next_block
        except IntegrityError:
            # первую запись успел сделать другой инстанс
            async with self._sessions() as s, s.begin():
                await s.execute(
                    update(ListenerCheckpoint)
                    .where(ListenerCheckpoint.chain_id == chain_id, ListenerCheckpoint.next_block < next_block)
                    .values(next_block=next_block)
                )

    # ----------------------------- internals -----------------------------

    async def _lock_intent(self, s: AsyncSession, intent_id: str) -> Intent:
        intent_id = normalize_hex32(intent_id)
        intent = await s.scalar(select(Intent).where(Intent.intent_id == intent_id).with_for_update())
        if intent is None:
            raise IntentNotFound(intent_id)
        return intent

    async def _transition(self, s: AsyncSession, intent: Intent, new_status: IntentStatus) -> None:
        observed = IntentStatus(intent.status)
        if observed.is_terminal:
            raise TerminalStateError(intent.intent_id, observed)
        if _STAGE[new_status] < _STAGE[observed]:
            raise InvariantViolation(f"intent {intent.intent_id} cannot move back from {observed} to {new_status}")
        if new_status == IntentStatus.COMPLETED and intent.is_cross_chain:
            bridge = await s.scalar(
                select(Transaction.id).where(
                    Transaction.intent_pk == intent.id, Transaction.type == TransactionType.BRIDGE
                )
            )
            if bridge is None:
                raise InvariantViolation(
                    f"cross-chain intent {intent.intent_id} cannot complete without a BRIDGE transaction"
                )
        res = await s.execute(
            update(Intent)
            .where(Intent.id == intent.id, Intent.status == observed)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InvariantViolation(f"intent {intent.intent_id} changed concurrently (expected {observed})")
        await s.refresh(intent)

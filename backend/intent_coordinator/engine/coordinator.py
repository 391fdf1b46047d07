"""Intent lifecycle state machine.

PENDING -> EXECUTING (cross-chain only) -> COMPLETED once the bridge relays;
FAILED on deadline, poll cap or a crashed poll. Terminal rows are never touched.

Every event runs as its own task. Handlers and polls of one intent serialize
on a per-intent lock taken before the first suspension point, so they run in
arrival order; different intents proceed concurrently. The store stays the
only authority: the engine's own state is timers, locks and attempt counters,
all rebuilt by ``recover``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from collections.abc import Awaitable, Callable
from typing import Any

from intent_coordinator.blockchain.abis import SYNDICATE_INTENT_RESOLVER
from intent_coordinator.blockchain.contracts import LENS, ContractGateway, IntentData
from intent_coordinator.blockchain.listener import log_meta
from intent_coordinator.bridge.across_client import BridgeDeposit, BridgeStatus, BridgeStatusClient
from intent_coordinator.engine.dispatch import DispatchResult, Outcome, dispatch
from intent_coordinator.engine.policies import DeadlinePolicy, IgnoreDeadline, RetryPolicy
from intent_coordinator.engine.scheduler import PollScheduler
from intent_coordinator.errors import (
    AlreadyExecutedError,
    DuplicateBridgeTransaction,
    DuplicateIntentId,
    IntentNotFound,
    StructuralError,
    TerminalStateError,
    TransientError,
    UnknownEventError,
)
from intent_coordinator.events import (
    ChainEvent,
    CrossChainOperationInitiated,
    IntentSubmitted,
    LogMeta,
    WinningTicketDetected,
    parse_event,
)
from intent_coordinator.models import (
    Intent,
    IntentStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from intent_coordinator.repos.intent_store import IntentStore
from intent_coordinator.telemetry.logging import get_logger
from intent_coordinator.telemetry.metrics import (
    bridge_polls_outstanding,
    bridge_polls_total,
    intent_transitions_total,
)
from intent_coordinator.validators import ZERO_ADDRESS

log = logging.getLogger(__name__)

BRIDGE_POLL = "BridgePoll"
CROSS_CHAIN_EVENT = "CrossChainOperationInitiated"
RESCAN_RANGE = 2_000


def _fields(event: ChainEvent) -> dict[str, Any]:
    if isinstance(event, WinningTicketDetected):
        return {"ticket_id": event.ticket_id, "block": event.meta.block_number}
    return {"intent_id": event.intent_id, "block": event.meta.block_number}


def _lock_key(event: ChainEvent) -> str:
    if isinstance(event, WinningTicketDetected):
        return f"ticket:{event.ticket_id}"
    return event.intent_id


class IntentCoordinator:
    def __init__(
        self,
        store: IntentStore,
        gateway: ContractGateway,
        bridge: BridgeStatusClient,
        *,
        policy: RetryPolicy | None = None,
        deadline: DeadlinePolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.bridge = bridge
        self.policy = policy or RetryPolicy()
        self.deadline = deadline or IgnoreDeadline()
        self._sleep = sleep
        self._clock = clock
        self.polls = PollScheduler(sleep=sleep, gauge=bridge_polls_outstanding)
        # lock lives while a handler holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._attempts: dict[str, int] = {}
        # intent_id -> first block not yet rescanned
        self._scanned: dict[str, int] = {}
        self._tasks: set[asyncio.Task[DispatchResult]] = set()
        self._closed = False

    # ------------------------------ ingress ------------------------------

    async def on_log(self, name: str, args: dict[str, Any], meta: LogMeta) -> None:
        """Listener callback: decode, then hand off to a per-event task."""
        try:
            event = parse_event(name, args, meta)
        except UnknownEventError as e:
            await dispatch(name, {"block": meta.block_number, "tx": meta.tx_hash}, _reraise(e))
            return
        self.submit(event)

    def submit(self, event: ChainEvent) -> asyncio.Task[DispatchResult]:
        if self._closed:
            raise RuntimeError("coordinator is closed")
        task = asyncio.create_task(self.process(event), name=f"{event.kind}:{_lock_key(event)}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process(self, event: ChainEvent) -> DispatchResult:
        """Handle one event under its intent lock, retrying transient failures in place."""
        async with self._lock(_lock_key(event)):
            attempt = 0
            while True:
                result = await dispatch(event.kind, _fields(event), lambda: self.handle(event))
                if result.outcome is not Outcome.TRANSIENT_ERROR or attempt >= self.policy.handler_max_retries:
                    return result
                attempt += 1
                # держим lock: следующие события того же intent ждут
                await self._sleep(self.policy.error_delay)

    async def handle(self, event: ChainEvent) -> Outcome:
        if isinstance(event, IntentSubmitted):
            return await self.on_intent_submitted(event)
        if isinstance(event, CrossChainOperationInitiated):
            return await self.on_cross_chain_initiated(event)
        if isinstance(event, WinningTicketDetected):
            return await self.on_winning_ticket(event)
        raise UnknownEventError(f"no handler for {type(event).__name__}")

    # ------------------------------ handlers ------------------------------

    async def on_intent_submitted(self, ev: IntentSubmitted) -> Outcome:
        existing = await self.store.find_intent_by_id(ev.intent_id)
        if existing is not None:
            if existing.status == IntentStatus.PENDING and existing.is_cross_chain:
                # created earlier but EXECUTING was never written
                await self._set_status(existing.intent_id, IntentStatus.EXECUTING)
                return Outcome.OK
            return Outcome.IGNORED

        details = await self.gateway.get_intent(ev.intent_id)
        meta: dict[str, Any] = {
            "submittedTxHash": ev.meta.tx_hash,
            "submittedBlock": ev.meta.block_number,
            "ticketId": str(details.ticket_id),
        }
        if details.gas_price is not None:
            meta["gasPrice"] = str(details.gas_price)
        if details.encoded_data:
            meta["encodedData"] = "0x" + details.encoded_data.hex()
        try:
            intent = await self.store.create_intent(
                intent_id=ev.intent_id,
                user=ev.user,
                intent_type=ev.intent_type,
                syndicate_address=details.syndicate_address,
                amount=details.amount,
                token_address=details.token_address,
                source_chain_id=details.source_chain,
                destination_chain_id=details.destination_chain,
                use_optimal_route=details.use_optimal_route,
                max_fee_percentage=details.max_fee_percentage,
                deadline=details.deadline,
                metadata=meta,
            )
        except DuplicateIntentId:
            # another writer (API) got there first
            return Outcome.IGNORED
        if intent.is_cross_chain:
            await self._set_status(intent.intent_id, IntentStatus.EXECUTING)
        return Outcome.OK

    async def on_cross_chain_initiated(self, ev: CrossChainOperationInitiated) -> Outcome:
        intent = await self.store.find_intent_by_id(ev.intent_id)
        if intent is None:
            # amount/user unknown: never fabricate a record
            raise IntentNotFound(ev.intent_id)
        if intent.is_terminal:
            return Outcome.IGNORED

        if await self.store.find_active_bridge_transaction(ev.intent_id) is not None:
            self._ensure_poll(ev.intent_id)
            return Outcome.IGNORED

        if intent.status == IntentStatus.PENDING:
            await self._set_status(ev.intent_id, IntentStatus.EXECUTING)
        try:
            await self.store.create_transaction(
                ev.intent_id,
                chain_id=ev.meta.chain_id,
                tx_hash=ev.meta.tx_hash,
                type=TransactionType.BRIDGE,
                status=TransactionStatus.PENDING,
                block_number=ev.meta.block_number,
                data={
                    "sourceChain": ev.source_chain,
                    "destinationChain": ev.destination_chain,
                    "logIndex": ev.meta.log_index,
                },
            )
        except DuplicateBridgeTransaction:
            self._ensure_poll(ev.intent_id)
            return Outcome.IGNORED
        self._attempts.pop(ev.intent_id, None)
        self._schedule_poll(ev.intent_id, 0)
        return Outcome.OK

    async def on_winning_ticket(self, ev: WinningTicketDetected) -> Outcome:
        syndicate = await self.gateway.ticket_to_syndicate(ev.ticket_id)
        if syndicate == ZERO_ADDRESS:
            return Outcome.IGNORED
        open_intents = await self.store.find_intents_by_syndicate(
            syndicate, statuses=(IntentStatus.PENDING, IntentStatus.EXECUTING)
        )
        # аудит: вывод средств делает контракт, состояние не меняем
        get_logger().info(
            "winning ticket",
            ticket_id=ev.ticket_id,
            amount=ev.amount,
            syndicate=syndicate,
            tx_hash=ev.meta.tx_hash,
            open_intents=[i.intent_id for i in open_intents],
        )
        return Outcome.OK

    # ------------------------------ polling ------------------------------

    def _schedule_poll(self, intent_id: str, delay: float) -> None:
        self.polls.schedule(intent_id, delay, lambda: self._poll(intent_id))

    def _ensure_poll(self, intent_id: str) -> None:
        if not self.polls.has(intent_id):
            self._schedule_poll(intent_id, 0)

    async def _poll(self, intent_id: str) -> DispatchResult:
        async with self._lock(intent_id):
            result = await dispatch(BRIDGE_POLL, {"intent_id": intent_id}, lambda: self.poll_bridge(intent_id))
            if result.outcome is Outcome.TRANSIENT_ERROR:
                self._schedule_poll(intent_id, self.policy.error_delay)
            elif result.outcome is Outcome.UNEXPECTED_ERROR:
                await self._fail_quietly(intent_id, f"bridge poll crashed: {result.error!r}")
        return result

    async def poll_bridge(self, intent_id: str) -> Outcome:
        """One poll cycle; reschedules itself unless the intent went terminal."""
        intent = await self.store.find_intent_by_id(intent_id)
        if intent is None or intent.is_terminal:
            self._forget(intent_id)
            return Outcome.IGNORED
        tx = await self.store.find_active_bridge_transaction(intent_id)
        if tx is None:
            self._forget(intent_id)
            return Outcome.IGNORED
        if self.deadline.expired(intent, self._clock()):
            await self._fail(intent_id, f"deadline {intent.deadline} passed")
            return Outcome.OK

        attempts = self._attempts[intent_id] = self._attempts.get(intent_id, 0) + 1
        status = await self._query_bridge(BridgeDeposit(intent_id, tx.chain_id, tx.tx_hash))
        bridge_polls_total.labels(status=str(status)).inc()
        log.info("bridge poll %s: %s (attempt %d)", intent_id, status, attempts)

        if status is BridgeStatus.RELAYED:
            await self.store.complete_bridge(intent_id, tx.id)
            intent_transitions_total.labels(status=IntentStatus.COMPLETED).inc()
            self._forget(intent_id)
            return Outcome.OK
        if self.policy.exhausted(attempts):
            await self._fail(intent_id, f"bridge not relayed after {attempts} polls")
            return Outcome.OK
        delay = self.policy.pending_delay if status is BridgeStatus.PENDING else self.policy.error_delay
        self._schedule_poll(intent_id, delay)
        return Outcome.OK

    async def _query_bridge(self, deposit: BridgeDeposit) -> BridgeStatus:
        try:
            return await asyncio.wait_for(self.bridge.poll_deposit_status(deposit), self.policy.poll_timeout)
        except asyncio.TimeoutError:
            log.warning("bridge poll %s timed out after %ss", deposit.intent_id, self.policy.poll_timeout)
            return BridgeStatus.ERROR

    # --------------------------- reconstruction ---------------------------

    async def recover(self, *, only_missing: bool = False) -> int:
        """Rebuild pending work from the store. Returns the number of polls scheduled."""
        scheduled = 0
        now = self._clock()
        for intent in await self.store.list_non_terminal_intents():
            intent_id = intent.intent_id
            if only_missing and self.polls.has(intent_id):
                continue
            if self.deadline.expired(intent, now):
                async with self._lock(intent_id):
                    await self._fail_quietly(intent_id, f"deadline {intent.deadline} passed")
                continue
            if await self.store.find_active_bridge_transaction(intent_id) is None:
                if intent.status == IntentStatus.EXECUTING and await self._rescan_cross_chain(intent):
                    scheduled += 1
                continue
            self._schedule_poll(intent_id, 0)
            scheduled += 1
        log.info("recovered %d bridge polls", scheduled)
        return scheduled

    async def _rescan_cross_chain(self, intent: Intent) -> bool:
        """Find a CrossChainOperationInitiated emitted while nobody was listening.

        Scans the source chain from the submission block (or from where the
        previous rescan stopped) and feeds the matching log through the normal
        handler. Returns True when a bridge poll got scheduled.
        """
        start = self._scanned.get(intent.intent_id, (intent.meta or {}).get("submittedBlock"))
        if start is None:
            return False
        try:
            head = await self.gateway.block_number(LENS)
            frm = int(start)
            while frm <= head:
                to = min(head, frm + RESCAN_RANGE - 1)
                for lg in await self.gateway.get_logs(LENS, SYNDICATE_INTENT_RESOLVER, CROSS_CHAIN_EVENT, frm, to):
                    try:
                        event = parse_event(CROSS_CHAIN_EVENT, dict(lg["args"]), log_meta(intent.source_chain_id, lg))
                    except UnknownEventError as e:
                        log.warning("rescan %s: skipping malformed log: %s", intent.intent_id, e)
                        continue
                    if event.intent_id != intent.intent_id:
                        continue
                    log.info("rescan %s: found missed %s at block %d", intent.intent_id, event.kind, event.meta.block_number)
                    self._scanned.pop(intent.intent_id, None)
                    result = await self.process(event)
                    return result.outcome is Outcome.OK
                frm = to + 1
                self._scanned[intent.intent_id] = frm
        except TransientError as e:
            # следующий reconcile продолжит с того же блока
            log.warning("rescan %s failed: %s", intent.intent_id, e)
        return False

    # ------------------------- manual resolution -------------------------

    async def resolve_intent_manually(self, intent_id: str) -> Transaction:
        """Sign and submit ``resolveIntent`` for a stored intent, once."""
        async with self._lock(intent_id):
            intent = await self.store.find_intent_by_id(intent_id)
            if intent is None:
                raise IntentNotFound(intent_id)
            if intent.is_terminal:
                raise TerminalStateError(intent.intent_id, intent.status)
            if await self.gateway.is_executed(intent.intent_id):
                raise AlreadyExecutedError(intent.intent_id)
            res = await self.gateway.resolve_intent(intent.intent_id, _intent_data(intent), intent.user)
            return await self.store.create_transaction(
                intent.intent_id,
                chain_id=intent.source_chain_id,
                tx_hash=res.tx_hash,
                type=TransactionType.INTENT_SUBMISSION,
                status=TransactionStatus.CONFIRMED,
                block_number=res.block_number,
                gas_used=res.gas_used,
                gas_fee=res.gas_fee,
            )

    # ----------------------------- lifecycle -----------------------------

    async def drain(self) -> None:
        """Wait for in-flight events and every poll chain to settle."""
        while self._tasks or self.polls.pending():
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self.polls.drain()

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.polls.close()

    # ----------------------------- internals -----------------------------

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _forget(self, intent_id: str) -> None:
        self._attempts.pop(intent_id, None)
        self._scanned.pop(intent_id, None)

    async def _set_status(self, intent_id: str, status: IntentStatus) -> Intent:
        intent = await self.store.update_intent_status(intent_id, status)
        intent_transitions_total.labels(status=status).inc()
        return intent

    async def _fail(self, intent_id: str, reason: str) -> None:
        await self.store.fail_intent(intent_id, reason)
        intent_transitions_total.labels(status=IntentStatus.FAILED).inc()
        self._forget(intent_id)
        self.polls.cancel(intent_id)

    async def _fail_quietly(self, intent_id: str, reason: str) -> None:
        try:
            await self._fail(intent_id, reason)
        except StructuralError as e:
            # already terminal or gone
            log.warning("could not fail intent %s (%s): %s", intent_id, reason, e)


def _intent_data(intent: Intent) -> IntentData:
    meta = intent.meta or {}
    encoded = str(meta.get("encodedData") or "")
    return IntentData(
        intent_type=intent.intent_type,
        syndicate_address=intent.syndicate_address,
        amount=int(intent.amount),
        token_address=intent.token_address,
        source_chain=intent.source_chain_id,
        destination_chain=intent.destination_chain_id,
        ticket_id=int(meta.get("ticketId") or 0),
        use_optimal_route=intent.use_optimal_route,
        max_fee_percentage=intent.max_fee_percentage,
        deadline=intent.deadline,
        metadata=bytes.fromhex(encoded[2:]) if encoded.startswith("0x") else b"",
    )


def _reraise(exc: BaseException) -> Callable[[], Awaitable[Outcome]]:
    async def _raise() -> Outcome:
        raise exc

    return _raise

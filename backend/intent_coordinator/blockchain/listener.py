"""Log-polling event listener, one instance per chain.

Subscriptions share one cursor. Each cycle reads ``[cursor, head]`` for every
subscription, merges the logs in node order (block, logIndex) and hands them
to the handlers one by one. A log already delivered is never delivered twice
by the same listener; after a failed cycle the cursor is not advanced and the
range is read again once the connection is back.

With a checkpoint store the cursor is persisted after every delivered range,
and a restarted listener resumes where the previous one stopped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from intent_coordinator.blockchain.contracts import ContractGateway
from intent_coordinator.errors import TransientError
from intent_coordinator.events import LogMeta

log = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any], LogMeta], Awaitable[None]]

SEEN_LIMIT = 10_000


class CheckpointStore(Protocol):
    async def load_checkpoint(self, chain_id: int) -> int | None: ...

    async def save_checkpoint(self, chain_id: int, next_block: int) -> None: ...


@dataclass(frozen=True)
class Subscription:
    contract: str
    event: str
    handler: Handler


def _hex(v: Any) -> str:
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    s = v.hex() if hasattr(v, "hex") else str(v)
    return s if s.startswith("0x") else "0x" + s


def log_meta(chain_id: int, lg: Mapping[str, Any]) -> LogMeta:
    return LogMeta(
        chain_id=int(chain_id),
        block_number=int(lg["blockNumber"]),
        tx_hash=_hex(lg["transactionHash"]),
        log_index=int(lg["logIndex"]),
    )


class ChainEventListener:
    def __init__(
        self,
        gateway: ContractGateway,
        chain: str,
        *,
        chain_id: int,
        poll_interval: float = 2.0,
        confirmations: int = 0,
        start_block: int | None = None,
        reconnect_delay: float = 5.0,
        max_range: int = 2_000,
        checkpoints: CheckpointStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.chain = chain
        self.chain_id = int(chain_id)
        self.poll_interval = poll_interval
        self.confirmations = confirmations
        self.start_block = start_block
        self.reconnect_delay = reconnect_delay
        self.max_range = max_range
        self.checkpoints = checkpoints
        self._sleep = sleep
        self._subs: list[Subscription] = []
        self._cursor: int | None = None
        self._seen: OrderedDict[tuple[str, int], None] = OrderedDict()
        self._task: asyncio.Task[None] | None = None

    @property
    def cursor(self) -> int | None:
        return self._cursor

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, contract: str, event_name: str, handler: Handler) -> Subscription:
        sub = Subscription(contract, event_name, handler)
        self._subs.append(sub)
        log.info("listener %s: subscribed %s.%s", self.chain, contract, event_name)
        return sub

    # ----------------------------- lifecycle -----------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"listener:{self.chain}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("listener %s stopped at block %s", self.chain, self._cursor)

    async def _run(self) -> None:
        log.info("listener %s started (%d subscriptions)", self.chain, len(self._subs))
        while True:
            try:
                await self.poll_once()
            except TransientError as e:
                log.warning("listener %s: %s; reconnecting in %ss", self.chain, e, self.reconnect_delay)
                await self._sleep(self.reconnect_delay)
                await self._reconnect()
                continue
            except Exception:
                # цикл не должен умирать молча: пишем и читаем диапазон заново
                log.exception(
                    "listener %s: cycle failed at block %s; retrying in %ss",
                    self.chain,
                    self._cursor,
                    self.reconnect_delay,
                )
                await self._sleep(self.reconnect_delay)
                continue
            await self._sleep(self.poll_interval)

    async def _reconnect(self) -> None:
        try:
            await self.gateway.reconnect(self.chain)
        except Exception:
            log.exception("listener %s: reconnect failed", self.chain)

    # ------------------------------- cycle -------------------------------

    async def poll_once(self) -> int:
        """One read/deliver cycle. Returns the number of delivered logs."""
        head = await self.gateway.block_number(self.chain) - self.confirmations
        if self._cursor is None:
            self._cursor = await self._initial_cursor(head)
        if head < self._cursor:
            return 0
        delivered = 0
        frm = self._cursor
        while frm <= head:
            to = min(head, frm + self.max_range - 1)
            delivered += await self._deliver_range(frm, to)
            frm = to + 1
            self._cursor = frm
            if self.checkpoints is not None:
                await self.checkpoints.save_checkpoint(self.chain_id, frm)
        return delivered

    async def _initial_cursor(self, head: int) -> int:
        if self.checkpoints is not None:
            saved = await self.checkpoints.load_checkpoint(self.chain_id)
            if saved is not None:
                log.info("listener %s: resuming from checkpoint %d", self.chain, saved)
                return saved
        return self.start_block if self.start_block is not None else max(head, 0)

    async def _deliver_range(self, frm: int, to: int) -> int:
        batch: list[tuple[tuple[int, int], Subscription, Any]] = []
        for sub in self._subs:
            for lg in await self.gateway.get_logs(self.chain, sub.contract, sub.event, frm, to):
                batch.append(((int(lg["blockNumber"]), int(lg["logIndex"])), sub, lg))
        batch.sort(key=lambda x: x[0])

        n = 0
        for _, sub, lg in batch:
            meta = log_meta(self.chain_id, lg)
            key = (meta.tx_hash, meta.log_index)
            if key in self._seen:
                continue
            self._remember(key)
            try:
                await sub.handler(sub.event, dict(lg["args"]), meta)
            except Exception:
                # handler errors stay with the handler; the stream goes on
                log.exception("listener %s: handler for %s failed at %s", self.chain, sub.event, meta.position)
            n += 1
        return n

    def _remember(self, key: tuple[str, int]) -> None:
        self._seen[key] = None
        while len(self._seen) > SEEN_LIMIT:
            self._seen.popitem(last=False)

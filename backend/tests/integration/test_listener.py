import asyncio

import pytest

from intent_coordinator.blockchain.listener import ChainEventListener
from intent_coordinator.errors import RpcError

from helpers import LENS_CHAIN, RecordingSleep


def _log(block: int, index: int, **args):
    return {
        "blockNumber": block,
        "logIndex": index,
        "transactionHash": bytes([block, index]) * 16,
        "args": args,
    }


class FakeNode:
    def __init__(self, head: int = 10):
        self.head = head
        self.logs: dict[str, list[dict]] = {}
        self.ranges: list[tuple[str, int, int]] = []
        self.block_failures = 0
        self.log_failures: list[Exception] = []
        self.reconnects = 0
        self.reconnect_failures = 0

    async def block_number(self, chain: str) -> int:
        if self.block_failures:
            self.block_failures -= 1
            raise RpcError("connection reset")
        return self.head

    async def get_logs(self, chain, contract, event, frm, to):
        self.ranges.append((event, frm, to))
        if self.log_failures:
            raise self.log_failures.pop(0)
        return [lg for lg in self.logs.get(event, []) if frm <= lg["blockNumber"] <= to]

    async def reconnect(self, chain: str) -> None:
        self.reconnects += 1
        if self.reconnect_failures:
            self.reconnect_failures -= 1
            raise RpcError("still down")


class Recorder:
    def __init__(self):
        self.seen: list[tuple[str, int, int]] = []

    async def __call__(self, name, args, meta):
        self.seen.append((name, meta.block_number, meta.log_index))


def _listener(node, **kw) -> ChainEventListener:
    kw.setdefault("start_block", 0)
    return ChainEventListener(node, "lens", chain_id=LENS_CHAIN, sleep=RecordingSleep(), **kw)  # type: ignore[arg-type]


async def test_logs_are_delivered_in_chain_order():
    node = FakeNode(head=10)
    node.logs["IntentSubmitted"] = [_log(3, 1, intentId="a"), _log(7, 0, intentId="b")]
    node.logs["CrossChainOperationInitiated"] = [_log(3, 2, intentId="a"), _log(5, 0, intentId="c")]
    rec = Recorder()
    lst = _listener(node)
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", rec)
    lst.subscribe("SyndicateIntentResolver", "CrossChainOperationInitiated", rec)

    assert await lst.poll_once() == 4
    assert rec.seen == [
        ("IntentSubmitted", 3, 1),
        ("CrossChainOperationInitiated", 3, 2),
        ("CrossChainOperationInitiated", 5, 0),
        ("IntentSubmitted", 7, 0),
    ]
    assert lst.cursor == 11


async def test_meta_carries_chain_and_tx():
    node = FakeNode(head=3)
    node.logs["IntentSubmitted"] = [_log(3, 0)]
    metas = []

    async def handler(name, args, meta):
        metas.append(meta)

    lst = _listener(node)
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", handler)
    await lst.poll_once()

    assert metas[0].chain_id == LENS_CHAIN
    assert metas[0].tx_hash == "0x" + (bytes([3, 0]) * 16).hex()


async def test_same_log_is_delivered_once():
    node = FakeNode(head=10)
    dup = _log(5, 0)
    node.logs["IntentSubmitted"] = [dup]
    rec = Recorder()
    lst = _listener(node)
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", rec)
    await lst.poll_once()

    # узел повторно отдаёт тот же лог в новом диапазоне
    node.head = 20
    node.logs["IntentSubmitted"] = [dict(dup, blockNumber=15)]
    await lst.poll_once()

    assert len(rec.seen) == 1


async def test_ranges_are_chunked_and_respect_confirmations():
    node = FakeNode(head=14)
    lst = _listener(node, max_range=5, confirmations=2)
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", Recorder())

    await lst.poll_once()

    assert node.ranges == [("IntentSubmitted", 0, 4), ("IntentSubmitted", 5, 9), ("IntentSubmitted", 10, 12)]
    assert lst.cursor == 13
    # голова не сдвинулась -> ничего не читаем
    assert await lst.poll_once() == 0
    assert len(node.ranges) == 3


async def test_cursor_starts_at_head_without_start_block():
    node = FakeNode(head=100)
    lst = ChainEventListener(node, "lens", chain_id=LENS_CHAIN, sleep=RecordingSleep())  # type: ignore[arg-type]
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", Recorder())
    await lst.poll_once()
    assert node.ranges == [("IntentSubmitted", 100, 100)]


async def test_handler_failure_does_not_stop_the_stream():
    node = FakeNode(head=10)
    node.logs["IntentSubmitted"] = [_log(1, 0), _log(2, 0)]
    delivered = []

    async def flaky(name, args, meta):
        delivered.append(meta.block_number)
        if meta.block_number == 1:
            raise RuntimeError("handler bug")

    lst = _listener(node)
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", flaky)
    await lst.poll_once()
    assert delivered == [1, 2]


async def test_run_loop_reconnects_after_node_failure():
    node = FakeNode(head=5)
    node.block_failures = 2
    node.logs["IntentSubmitted"] = [_log(4, 0)]
    rec = Recorder()
    sleep = RecordingSleep()
    lst = ChainEventListener(
        node, "lens", chain_id=LENS_CHAIN, start_block=0, reconnect_delay=7, poll_interval=1, sleep=sleep  # type: ignore[arg-type]
    )
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", rec)

    await lst.start()
    try:
        await asyncio.wait_for(_until(lambda: rec.seen), 5)
    finally:
        await lst.stop()

    assert node.reconnects == 2
    assert sleep.calls[:2] == [7, 7]
    assert rec.seen == [("IntentSubmitted", 4, 0)]
    assert not lst.running


async def _until(predicate):
    while not predicate():
        await asyncio.sleep(0.01)


async def test_run_loop_survives_unexpected_errors():
    node = FakeNode(head=5)
    node.block_failures = 1
    node.reconnect_failures = 1
    node.log_failures = [KeyError("args")]
    node.logs["IntentSubmitted"] = [_log(4, 0)]
    rec = Recorder()
    sleep = RecordingSleep()
    lst = ChainEventListener(
        node, "lens", chain_id=LENS_CHAIN, start_block=0, reconnect_delay=7, poll_interval=1, sleep=sleep  # type: ignore[arg-type]
    )
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", rec)

    await lst.start()
    try:
        await asyncio.wait_for(_until(lambda: rec.seen), 5)
        assert lst.running
    finally:
        await lst.stop()

    # reconnect упал, потом get_logs упал не-транзиентно: цикл жив
    assert node.reconnects == 1
    assert sleep.calls[:2] == [7, 7]
    assert rec.seen == [("IntentSubmitted", 4, 0)]
    assert lst.cursor == 6


async def test_cursor_is_checkpointed_and_resumed_after_restart(store):
    node = FakeNode(head=10)
    first = ChainEventListener(node, "lens", chain_id=LENS_CHAIN, checkpoints=store, sleep=RecordingSleep())  # type: ignore[arg-type]
    first.subscribe("SyndicateIntentResolver", "IntentSubmitted", Recorder())
    await first.poll_once()
    assert await store.load_checkpoint(LENS_CHAIN) == 11

    # пока процесс стоял, вышли новые блоки с событием
    node.head = 15
    node.logs["IntentSubmitted"] = [_log(13, 0)]
    node.ranges.clear()
    rec = Recorder()
    second = ChainEventListener(node, "lens", chain_id=LENS_CHAIN, checkpoints=store, sleep=RecordingSleep())  # type: ignore[arg-type]
    second.subscribe("SyndicateIntentResolver", "IntentSubmitted", rec)
    await second.poll_once()

    assert node.ranges == [("IntentSubmitted", 11, 15)]
    assert rec.seen == [("IntentSubmitted", 13, 0)]
    assert await store.load_checkpoint(LENS_CHAIN) == 16


async def test_checkpoint_is_not_written_for_a_failed_range(store):
    node = FakeNode(head=10)
    node.log_failures = [RpcError("timeout")]
    lst = _listener(node, checkpoints=store, max_range=5)
    lst.subscribe("SyndicateIntentResolver", "IntentSubmitted", Recorder())

    with pytest.raises(RpcError):
        await lst.poll_once()
    assert await store.load_checkpoint(LENS_CHAIN) is None
    assert lst.cursor == 0

    await lst.poll_once()
    assert await store.load_checkpoint(LENS_CHAIN) == 11

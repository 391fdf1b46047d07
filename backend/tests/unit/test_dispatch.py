import asyncio

from sqlalchemy.exc import OperationalError

from intent_coordinator.engine.dispatch import Outcome, classify, dispatch
from intent_coordinator.engine.policies import FailAfterDeadline, IgnoreDeadline, RetryPolicy, deadline_policy
from intent_coordinator.errors import IntentNotFound, RpcError


def test_classify():
    assert classify(RpcError("x")) is Outcome.TRANSIENT_ERROR
    assert classify(OperationalError("SELECT 1", {}, Exception("gone"))) is Outcome.TRANSIENT_ERROR
    assert classify(asyncio.TimeoutError()) is Outcome.TRANSIENT_ERROR
    assert classify(IntentNotFound("0x00")) is Outcome.STRUCTURAL_ERROR
    assert classify(KeyError("x")) is Outcome.UNEXPECTED_ERROR


async def test_dispatch_never_raises():
    async def ok():
        return Outcome.IGNORED

    async def none():
        return None

    async def crash():
        raise ZeroDivisionError

    assert (await dispatch("E", {"intent_id": "x"}, ok)).outcome is Outcome.IGNORED
    assert (await dispatch("E", {}, none)).outcome is Outcome.OK
    res = await dispatch("E", {}, crash)
    assert res.outcome is Outcome.UNEXPECTED_ERROR
    assert isinstance(res.error, ZeroDivisionError)
    assert not res.ok


def test_retry_policy_exhausted():
    assert not RetryPolicy().exhausted(10_000)
    p = RetryPolicy(max_attempts=3)
    assert not p.exhausted(2)
    assert p.exhausted(3)


class _I:
    def __init__(self, deadline):
        self.deadline = deadline


def test_deadline_policies():
    assert not IgnoreDeadline().expired(_I(1), 10**10)
    fail = FailAfterDeadline(grace_sec=10)
    assert not fail.expired(_I(100), 105)
    assert fail.expired(_I(100), 111)
    assert not fail.expired(_I(0), 10**10)
    assert isinstance(deadline_policy("fail"), FailAfterDeadline)

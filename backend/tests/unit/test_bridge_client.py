import asyncio

import httpx
import pytest

from intent_coordinator.bridge.across_client import BridgeDeposit, BridgeStatus, BridgeStatusClient

from helpers import LENS_CHAIN, intent_id, tx_hash

DEPOSIT = BridgeDeposit(intent_id(1), LENS_CHAIN, tx_hash(1))


def _client(handler, timeout: float = 10.0) -> BridgeStatusClient:
    http = httpx.AsyncClient(base_url="https://bridge.test/api", transport=httpx.MockTransport(handler))
    return BridgeStatusClient("https://bridge.test/api", timeout=timeout, client=http)


@pytest.mark.parametrize(
    "code,body,expected",
    [
        (200, {"status": "filled"}, BridgeStatus.RELAYED),
        (200, {"status": "pending"}, BridgeStatus.PENDING),
        (200, {"status": "expired"}, BridgeStatus.ERROR),
        (200, {"nope": 1}, BridgeStatus.ERROR),
        (404, {"error": "not found"}, BridgeStatus.PENDING),
        (500, {"error": "boom"}, BridgeStatus.ERROR),
    ],
)
async def test_status_mapping(code, body, expected):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(code, json=body)

    client = _client(handler)
    try:
        assert await client.poll_deposit_status(DEPOSIT) is expected
    finally:
        await client.close()

    req = seen[0]
    assert req.url.path == "/api/deposit/status"
    assert req.url.params["originChainId"] == str(LENS_CHAIN)
    assert req.url.params["depositTxHash"] == DEPOSIT.tx_hash


async def test_transport_error_is_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    try:
        assert await client.poll_deposit_status(DEPOSIT) is BridgeStatus.ERROR
    finally:
        await client.close()


async def test_slow_bridge_times_out_as_error():
    async def slow(_request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={"status": "filled"})

    client = _client(slow, timeout=0.05)
    try:
        assert await client.poll_deposit_status(DEPOSIT) is BridgeStatus.ERROR
    finally:
        await client.close()

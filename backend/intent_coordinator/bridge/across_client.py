"""Bridge deposit status client (Across ``/deposit/status`` API)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from intent_coordinator.errors import BridgeQueryError

log = logging.getLogger(__name__)


class BridgeStatus(StrEnum):
    PENDING = "PENDING"
    RELAYED = "RELAYED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class BridgeDeposit:
    """What the bridge needs to find a deposit: origin chain and the initiating tx."""

    intent_id: str
    origin_chain_id: int
    tx_hash: str


# Across deposit statuses
_STATUS_MAP = {
    "filled": BridgeStatus.RELAYED,
    "pending": BridgeStatus.PENDING,
}


class BridgeStatusClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def poll_deposit_status(self, deposit: BridgeDeposit) -> BridgeStatus:
        """Point-in-time status; any failure to ask is reported as ERROR."""
        try:
            raw = await asyncio.wait_for(self._query(deposit), timeout=self.timeout)
        except (BridgeQueryError, asyncio.TimeoutError) as e:
            log.warning("bridge status query failed for %s: %s", deposit.intent_id, e or "timeout")
            return BridgeStatus.ERROR
        status = _STATUS_MAP.get(str(raw).lower())
        if status is None:
            log.warning("bridge reports %r for %s (tx %s)", raw, deposit.intent_id, deposit.tx_hash)
            return BridgeStatus.ERROR
        return status

    async def _query(self, deposit: BridgeDeposit) -> Any:
        params = {"originChainId": deposit.origin_chain_id, "depositTxHash": deposit.tx_hash}
        try:
            resp = await self._client.get("/deposit/status", params=params)
        except httpx.HTTPError as e:
            raise BridgeQueryError(f"GET /deposit/status: {e}") from e
        # депозит ещё не проиндексирован
        if resp.status_code == 404:
            return "pending"
        try:
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPStatusError, ValueError) as e:
            raise BridgeQueryError(f"GET /deposit/status: {e}") from e
        if not isinstance(body, dict) or "status" not in body:
            raise BridgeQueryError(f"unexpected body: {body!r}")
        return body["status"]

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from intent_coordinator.blockchain.abis import (
    BASE_CHAIN_INTENT_RESOLVER,
    CROSS_CHAIN_RESOLVER,
    SYNDICATE_INTENT_RESOLVER,
    TICKET_REGISTRY,
)
from intent_coordinator.blockchain.contracts import BASE, LENS, ContractGateway
from intent_coordinator.blockchain.listener import ChainEventListener
from intent_coordinator.blockchain.web3_client import ChainClient, load_account
from intent_coordinator.bridge.across_client import BridgeStatusClient
from intent_coordinator.config import Settings
from intent_coordinator.db.session import make_engine, make_sessionmaker
from intent_coordinator.engine.coordinator import IntentCoordinator
from intent_coordinator.engine.policies import RetryPolicy, deadline_policy
from intent_coordinator.models import Transaction
from intent_coordinator.repos.intent_store import IntentStore

log = logging.getLogger(__name__)

Closer = Callable[[], Awaitable[Any]]


class EngineHandle:
    """Owns the listeners, the coordinator and the reconcile loop of one engine instance.

    ``start()`` reconstructs pending work from the store before any listener
    delivers, ``stop()`` tears everything down in reverse. Usable as an async
    context manager.
    """

    def __init__(
        self,
        coordinator: IntentCoordinator,
        listeners: Sequence[ChainEventListener] = (),
        *,
        reconcile_interval: float = 300.0,
        closers: Sequence[Closer] = (),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.coordinator = coordinator
        self.listeners = list(listeners)
        self.reconcile_interval = reconcile_interval
        self._closers = list(closers)
        self._sleep = sleep
        self._reconcile_task: asyncio.Task[None] | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> EngineHandle:
        if self._started:
            return self
        self._started = True
        await self.coordinator.recover()
        for listener in self.listeners:
            await listener.start()
        self._reconcile_task = asyncio.create_task(self._reconcile_loop(), name="reconcile")
        log.info("engine started (%d listeners)", len(self.listeners))
        return self

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        task, self._reconcile_task = self._reconcile_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        for listener in self.listeners:
            await listener.stop()
        await self.coordinator.close()
        for close in self._closers:
            try:
                await close()
            except Exception as e:
                log.warning("close failed during shutdown: %s", e)
        log.info("engine stopped")

    async def __aenter__(self) -> EngineHandle:
        return await self.start()

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def resolve_intent_manually(self, intent_id: str) -> Transaction:
        return await self.coordinator.resolve_intent_manually(intent_id)

    async def _reconcile_loop(self) -> None:
        while True:
            await self._sleep(self.reconcile_interval)
            try:
                await self.coordinator.recover(only_missing=True)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("periodic reconcile failed")


def build_engine(cfg: Settings) -> EngineHandle:
    """Wire the production engine from settings. Fails fast on missing config."""
    cfg.require_worker_config()
    assert cfg.lens_rpc_url and cfg.base_rpc_url  # checked above

    lens = ChainClient(LENS, cfg.lens_rpc_url, cfg.lens_chain_id, abi_dir=cfg.abi_dir)
    base = ChainClient(BASE, cfg.base_rpc_url, cfg.base_chain_id, abi_dir=cfg.abi_dir)
    lens.register_contract(SYNDICATE_INTENT_RESOLVER, str(cfg.lens_intent_resolver))
    base.register_contract(CROSS_CHAIN_RESOLVER, str(cfg.cross_chain_resolver))
    base.register_contract(TICKET_REGISTRY, str(cfg.ticket_registry))
    if cfg.base_intent_resolver:
        base.register_contract(BASE_CHAIN_INTENT_RESOLVER, cfg.base_intent_resolver)

    gateway = ContractGateway({LENS: lens, BASE: base}, signer=load_account(cfg.private_key))
    db_engine = make_engine(cfg.dsn, pool_size=cfg.postgres_pool_size)
    store = IntentStore(make_sessionmaker(db_engine))
    bridge = BridgeStatusClient(cfg.bridge_api_url, timeout=cfg.bridge_poll_timeout_sec)
    policy = RetryPolicy(
        pending_delay=cfg.bridge_pending_delay_sec,
        error_delay=cfg.bridge_error_delay_sec,
        max_attempts=cfg.bridge_max_attempts or None,
        poll_timeout=cfg.bridge_poll_timeout_sec,
        handler_max_retries=cfg.handler_max_retries,
    )
    coordinator = IntentCoordinator(
        store, gateway, bridge, policy=policy, deadline=deadline_policy(cfg.deadline_policy)
    )

    listener_kw: dict[str, Any] = {
        "poll_interval": cfg.listener_poll_interval_sec,
        "confirmations": cfg.listener_confirmations,
        "start_block": cfg.listener_start_block,
        "reconnect_delay": cfg.listener_reconnect_delay_sec,
        "checkpoints": store,
    }
    lens_listener = ChainEventListener(gateway, LENS, chain_id=cfg.lens_chain_id, **listener_kw)
    lens_listener.subscribe(SYNDICATE_INTENT_RESOLVER, "IntentSubmitted", coordinator.on_log)
    lens_listener.subscribe(SYNDICATE_INTENT_RESOLVER, "CrossChainOperationInitiated", coordinator.on_log)
    base_listener = ChainEventListener(gateway, BASE, chain_id=cfg.base_chain_id, **listener_kw)
    base_listener.subscribe(CROSS_CHAIN_RESOLVER, "WinningTicketDetected", coordinator.on_log)

    return EngineHandle(
        coordinator,
        [lens_listener, base_listener],
        reconcile_interval=cfg.reconcile_interval_sec,
        closers=[bridge.close, db_engine.dispose],
    )

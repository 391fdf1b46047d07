"""Coordinating process: ``python -m intent_coordinator.worker``."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from intent_coordinator.config import settings
from intent_coordinator.engine.handle import build_engine
from intent_coordinator.errors import ConfigurationError
from intent_coordinator.telemetry.logging import init_logging

logger = logging.getLogger(__name__)


async def run() -> None:
    handle = build_engine(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    async with handle:
        logger.info("Intent coordinator running")
        await stop.wait()
        logger.info("Shutdown requested, stopping engine")


def main() -> int:
    init_logging()
    try:
        settings.require_worker_config()
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    logger.info("Config: %s", settings.debug_dump())
    asyncio.run(run())
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Uniform handler boundary: run, classify, log, count.

Nothing raised by a handler escapes ``dispatch`` except cancellation, so one
bad event never takes the listener or the other intents down with it.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy.exc import OperationalError

from intent_coordinator.errors import StructuralError, TransientError
from intent_coordinator.telemetry.logging import get_logger
from intent_coordinator.telemetry.metrics import coordinator_events_total


class Outcome(StrEnum):
    OK = "ok"
    IGNORED = "ignored"
    TRANSIENT_ERROR = "transient_error"
    STRUCTURAL_ERROR = "structural_error"
    UNEXPECTED_ERROR = "unexpected_error"


# store connectivity blips are retried like RPC failures
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientError, OperationalError, asyncio.TimeoutError)


@dataclass(frozen=True)
class DispatchResult:
    outcome: Outcome
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.OK, Outcome.IGNORED)


def classify(exc: BaseException) -> Outcome:
    if isinstance(exc, TRANSIENT_ERRORS):
        return Outcome.TRANSIENT_ERROR
    if isinstance(exc, StructuralError):
        return Outcome.STRUCTURAL_ERROR
    return Outcome.UNEXPECTED_ERROR


async def dispatch(
    event_type: str,
    fields: dict[str, Any],
    handler: Callable[[], Awaitable[Outcome | None]],
) -> DispatchResult:
    log = get_logger().bind(event_type=event_type, **fields)
    t0 = time.perf_counter()
    error: BaseException | None = None
    try:
        outcome = await handler() or Outcome.OK
    except asyncio.CancelledError:
        raise
    except Exception as e:
        error = e
        outcome = classify(e)

    duration_ms = round((time.perf_counter() - t0) * 1000.0, 3)
    if outcome is Outcome.UNEXPECTED_ERROR:
        log.error("handler crashed", outcome=str(outcome), duration_ms=duration_ms, exc_info=error)
    elif error is not None:
        level = log.warning if outcome is Outcome.TRANSIENT_ERROR else log.error
        level("handler failed", outcome=str(outcome), duration_ms=duration_ms, error=str(error))
    else:
        log.info("handled", outcome=str(outcome), duration_ms=duration_ms)
    coordinator_events_total.labels(event=event_type, outcome=str(outcome)).inc()
    return DispatchResult(outcome, error)

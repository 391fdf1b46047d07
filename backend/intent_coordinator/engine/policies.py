from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from intent_coordinator.models import Intent


@dataclass(frozen=True)
class RetryPolicy:
    # bridge relay time is external, so PENDING gets a flat delay
    pending_delay: float = 60.0
    # the query itself failed
    error_delay: float = 300.0
    # None = poll until relayed
    max_attempts: int | None = None
    poll_timeout: float = 10.0
    handler_max_retries: int = 5

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts


class DeadlinePolicy(Protocol):
    """Decides whether a non-terminal intent is past the point of no return."""

    def expired(self, intent: Intent, now: float) -> bool: ...


class IgnoreDeadline:
    def expired(self, intent: Intent, now: float) -> bool:
        return False


class FailAfterDeadline:
    def __init__(self, grace_sec: float = 0.0) -> None:
        self.grace_sec = grace_sec

    def expired(self, intent: Intent, now: float) -> bool:
        # deadline 0 = none
        return bool(intent.deadline) and now > intent.deadline + self.grace_sec


def deadline_policy(name: str) -> DeadlinePolicy:
    if name == "ignore":
        return IgnoreDeadline()
    if name == "fail":
        return FailAfterDeadline()
    raise ValueError(f"unknown deadline policy {name!r}")

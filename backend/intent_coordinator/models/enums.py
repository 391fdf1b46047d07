from __future__ import annotations

from enum import IntEnum, StrEnum


class IntentType(IntEnum):
    JOIN_SYNDICATE = 1
    BUY_TICKET = 2
    CLAIM_WINNINGS = 3
    WITHDRAW_FUNDS = 4


class IntentStatus(StrEnum):
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({IntentStatus.COMPLETED, IntentStatus.FAILED})


class TransactionType(StrEnum):
    APPROVAL = "APPROVAL"
    INTENT_SUBMISSION = "INTENT_SUBMISSION"
    BRIDGE = "BRIDGE"
    TICKET_PURCHASE = "TICKET_PURCHASE"


class TransactionStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

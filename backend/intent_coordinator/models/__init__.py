from .checkpoint import ListenerCheckpoint
from .enums import IntentStatus, IntentType, TransactionStatus, TransactionType
from .intent import Intent
from .transaction import Transaction

__all__ = [
    "Intent",
    "IntentStatus",
    "IntentType",
    "ListenerCheckpoint",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
]

from __future__ import annotations


class CoordinatorError(Exception):
    """Base class for every error raised by the coordinator."""


class ConfigurationError(CoordinatorError):
    """Required configuration is missing; the process must not start."""


# ----------------------------- non-retryable -----------------------------


class StructuralError(CoordinatorError):
    """The handler invocation is wrong by construction and must not be retried."""


class DuplicateIntentId(StructuralError):
    def __init__(self, intent_id: str) -> None:
        super().__init__(f"intent {intent_id} already exists")
        self.intent_id = intent_id


class IntentNotFound(StructuralError):
    def __init__(self, intent_id: str) -> None:
        super().__init__(f"intent {intent_id} not found")
        self.intent_id = intent_id


class TerminalStateError(IntentNotFound):
    """Mutation attempted on a COMPLETED/FAILED intent."""

    def __init__(self, intent_id: str, status: str) -> None:
        StructuralError.__init__(self, f"intent {intent_id} is terminal ({status})")
        self.intent_id = intent_id
        self.status = status


class ForeignKeyViolation(StructuralError):
    def __init__(self, intent_id: str) -> None:
        super().__init__(f"transaction references unknown intent {intent_id}")
        self.intent_id = intent_id


class DuplicateBridgeTransaction(StructuralError):
    def __init__(self, intent_id: str) -> None:
        super().__init__(f"intent {intent_id} already has an active BRIDGE transaction")
        self.intent_id = intent_id


class InvariantViolation(StructuralError):
    pass


class UnknownEventError(StructuralError):
    pass


class AlreadyExecutedError(StructuralError):
    def __init__(self, intent_id: str) -> None:
        super().__init__(f"intent {intent_id} already executed on-chain")
        self.intent_id = intent_id


# ------------------------------- retryable -------------------------------


class TransientError(CoordinatorError):
    """Network/node level failure; the same operation may succeed later."""


class RpcError(TransientError):
    pass


class BridgeQueryError(TransientError):
    pass

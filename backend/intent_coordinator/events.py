"""Typed on-chain events consumed by the engine.

Each contract event maps to exactly one pydantic model tagged by ``kind``.
Anything that does not match one of them is rejected at the boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from intent_coordinator.errors import UnknownEventError
from intent_coordinator.validators import normalize_address, normalize_hex32


class LogMeta(BaseModel):
    """Raw log position, as reported by the node."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


class _ChainEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    meta: LogMeta


class IntentSubmitted(_ChainEvent):
    kind: Literal["IntentSubmitted"] = "IntentSubmitted"
    intent_id: str
    user: str
    intent_type: int = Field(ge=0, le=255)

    @field_validator("intent_id", mode="before")
    @classmethod
    def _intent_id(cls, v: Any) -> str:
        return normalize_hex32(v)

    @field_validator("user", mode="before")
    @classmethod
    def _user(cls, v: Any) -> str:
        return normalize_address(v)


class CrossChainOperationInitiated(_ChainEvent):
    kind: Literal["CrossChainOperationInitiated"] = "CrossChainOperationInitiated"
    intent_id: str
    source_chain: int = Field(ge=0)
    destination_chain: int = Field(ge=0)

    @field_validator("intent_id", mode="before")
    @classmethod
    def _intent_id(cls, v: Any) -> str:
        return normalize_hex32(v)


class WinningTicketDetected(_ChainEvent):
    kind: Literal["WinningTicketDetected"] = "WinningTicketDetected"
    ticket_id: int = Field(ge=0)
    # uint256 as decimal string
    amount: str

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> str:
        if isinstance(v, bool) or not isinstance(v, (int, str)):
            raise ValueError("amount must be an integer")
        s = str(v)
        if not s.isascii() or not s.isdigit():
            raise ValueError("amount must be a non-negative integer")
        return s


ChainEvent = Annotated[
    Union[IntentSubmitted, CrossChainOperationInitiated, WinningTicketDetected],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(ChainEvent)

# contract arg name -> model field, per event
_ARG_MAP: dict[str, dict[str, str]] = {
    "IntentSubmitted": {"intentId": "intent_id", "user": "user", "intentType": "intent_type"},
    "CrossChainOperationInitiated": {
        "intentId": "intent_id",
        "sourceChain": "source_chain",
        "destinationChain": "destination_chain",
    },
    "WinningTicketDetected": {"ticketId": "ticket_id", "amount": "amount"},
}


def parse_event(name: str, args: Mapping[str, Any], meta: LogMeta) -> ChainEvent:
    """Decoded log args -> typed event. Raises UnknownEventError on any mismatch."""
    mapping = _ARG_MAP.get(name)
    if mapping is None:
        raise UnknownEventError(f"unexpected event {name!r}")
    missing = [k for k in mapping if k not in args]
    unexpected = [k for k in args if k not in mapping]
    if missing or unexpected:
        raise UnknownEventError(f"{name}: bad shape (missing={missing}, unexpected={unexpected})")
    payload = {field: args[arg] for arg, field in mapping.items()}
    try:
        return _adapter.validate_python({"kind": name, "meta": meta, **payload})
    except (ValidationError, ValueError, TypeError) as e:
        raise UnknownEventError(f"{name}: invalid payload: {e}") from e

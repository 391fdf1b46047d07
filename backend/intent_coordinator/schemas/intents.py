from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from intent_coordinator.models import Intent, IntentStatus, IntentType, Transaction
from intent_coordinator.validators import as_uint_string, normalize_address


class IntentSubmitIn(BaseModel):
    user: str
    intentType: IntentType
    syndicateAddress: str
    # uint256, decimal string or integer
    amount: str
    tokenAddress: str
    sourceChainId: int = Field(..., ge=1)
    destinationChainId: int = Field(..., ge=1)
    useOptimalRoute: bool = True
    # basis points
    maxFeePercentage: int = Field(0, ge=0, le=10_000)
    deadline: int = Field(..., ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("user", "syndicateAddress", "tokenAddress")
    @classmethod
    def _v_address(cls, v: str) -> str:
        try:
            return normalize_address(v)
        except ValueError:
            raise ValueError("bad_address") from None

    @field_validator("amount", mode="before")
    @classmethod
    def _v_amount(cls, v: Any) -> str:
        if isinstance(v, float):
            raise ValueError("amount_must_be_integer")
        try:
            amount = as_uint_string(v, "amount")
        except ValueError:
            raise ValueError("bad_amount") from None
        if int(amount) == 0:
            raise ValueError("amount_required")
        return amount


class IntentSubmitOut(BaseModel):
    intentId: str
    status: str
    createdAt: datetime


class TransactionOut(BaseModel):
    chainId: int
    txHash: str
    type: str
    status: str
    blockNumber: int | None = None
    gasUsed: str | None = None
    gasFee: str | None = None
    createdAt: datetime

    @classmethod
    def of(cls, tx: Transaction) -> TransactionOut:
        return cls(
            chainId=tx.chain_id,
            txHash=tx.tx_hash,
            type=str(tx.type),
            status=str(tx.status),
            blockNumber=tx.block_number,
            gasUsed=tx.gas_used,
            gasFee=tx.gas_fee,
            createdAt=tx.created_at,
        )


class IntentOut(BaseModel):
    intentId: str
    status: str
    user: str
    intentType: int
    syndicateAddress: str
    amount: str
    tokenAddress: str
    sourceChainId: int
    destinationChainId: int
    useOptimalRoute: bool
    maxFeePercentage: int
    deadline: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    transactions: list[TransactionOut] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def of(cls, intent: Intent, transactions: list[Transaction]) -> IntentOut:
        return cls(
            intentId=intent.intent_id,
            status=str(intent.status),
            user=intent.user,
            intentType=intent.intent_type,
            syndicateAddress=intent.syndicate_address,
            amount=intent.amount,
            tokenAddress=intent.token_address,
            sourceChainId=intent.source_chain_id,
            destinationChainId=intent.destination_chain_id,
            useOptimalRoute=intent.use_optimal_route,
            maxFeePercentage=intent.max_fee_percentage,
            deadline=intent.deadline,
            metadata=dict(intent.meta or {}),
            transactions=[TransactionOut.of(t) for t in transactions],
            createdAt=intent.created_at,
            updatedAt=intent.updated_at,
        )


class IntentSummaryOut(BaseModel):
    intentId: str
    intentType: int
    syndicateAddress: str
    status: str
    createdAt: datetime

    @classmethod
    def of(cls, intent: Intent) -> IntentSummaryOut:
        return cls(
            intentId=intent.intent_id,
            intentType=intent.intent_type,
            syndicateAddress=intent.syndicate_address,
            status=str(intent.status),
            createdAt=intent.created_at,
        )


class UserIntentsOut(BaseModel):
    intents: list[IntentSummaryOut]
    count: int
    page: int
    totalPages: int


class IntentUpdateIn(BaseModel):
    status: IntentStatus


class IntentUpdateOut(BaseModel):
    intentId: str
    status: str
    updatedAt: datetime

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from intent_coordinator.db.base import Base
from intent_coordinator.models.enums import TransactionStatus

if TYPE_CHECKING:
    from intent_coordinator.models.intent import Intent

_ACTIVE_BRIDGE = sa.text("type = 'BRIDGE' AND status <> 'FAILED'")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_intent_pk", "intent_pk"),
        Index("ix_transactions_tx_hash", "tx_hash"),
        Index("ix_transactions_chain_id", "chain_id"),
        Index("ix_transactions_status", "status"),
        # at most one non-FAILED BRIDGE row per intent
        Index(
            "uq_transactions_active_bridge",
            "intent_pk",
            unique=True,
            postgresql_where=_ACTIVE_BRIDGE,
            sqlite_where=_ACTIVE_BRIDGE,
        ),
    )

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    intent_pk: Mapped[int] = mapped_column(
        sa.Integer, ForeignKey("intents.id", ondelete="RESTRICT"), nullable=False
    )

    chain_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    tx_hash: Mapped[str] = mapped_column(sa.String(66), nullable=False)
    type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=TransactionStatus.PENDING)
    block_number: Mapped[int | None] = mapped_column(sa.BigInteger, nullable=True)
    gas_used: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    gas_fee: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(sa.JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    intent: Mapped[Intent] = relationship(back_populates="transactions", lazy="raise")

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, type='{self.type}', status='{self.status}')>"

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from intent_coordinator.db.base import Base
from intent_coordinator.models.enums import IntentStatus

if TYPE_CHECKING:
    from intent_coordinator.models.transaction import Transaction


class Intent(Base):
    __tablename__ = "intents"
    __table_args__ = (
        Index("ix_intents_user", "user"),
        Index("ix_intents_syndicate_address", "syndicate_address"),
        Index("ix_intents_status", "status"),
    )

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    # bytes32 из контракта, 0x-hex
    intent_id: Mapped[str] = mapped_column(sa.String(66), unique=True, nullable=False)
    user: Mapped[str] = mapped_column(sa.String(42), nullable=False)
    intent_type: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    syndicate_address: Mapped[str] = mapped_column(sa.String(42), nullable=False)
    # wei as decimal string, never a fixed-width integer
    amount: Mapped[str] = mapped_column(sa.Text, nullable=False)
    token_address: Mapped[str] = mapped_column(sa.String(42), nullable=False)
    source_chain_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    destination_chain_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    use_optimal_route: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    # basis points, 100 = 1%
    max_fee_percentage: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    deadline: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=IntentStatus.PENDING)
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", sa.JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    transactions: Mapped[list[Transaction]] = relationship(
        back_populates="intent", order_by="Transaction.id", lazy="raise"
    )

    @property
    def is_cross_chain(self) -> bool:
        return self.source_chain_id != self.destination_chain_id

    @property
    def is_terminal(self) -> bool:
        return IntentStatus(self.status).is_terminal

    def __repr__(self) -> str:
        return f"<Intent(intent_id='{self.intent_id}', status='{self.status}')>"

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import func
from sqlalchemy.orm import Mapped, mapped_column

from intent_coordinator.db.base import Base


class ListenerCheckpoint(Base):
    """Next block a chain listener has to read; survives restarts."""

    __tablename__ = "listener_checkpoints"

    chain_id: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=False)
    next_block: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ListenerCheckpoint(chain_id={self.chain_id}, next_block={self.next_block})>"

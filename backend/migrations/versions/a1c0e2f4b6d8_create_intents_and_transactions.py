"""create intents and transactions tables

Revision ID: a1c0e2f4b6d8
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "a1c0e2f4b6d8"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_BRIDGE = sa.text("type = 'BRIDGE' AND status <> 'FAILED'")


def upgrade() -> None:
    op.create_table(
        "intents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("intent_id", sa.String(66), nullable=False),
        sa.Column("user", sa.String(42), nullable=False),
        sa.Column("intent_type", sa.Integer(), nullable=False),
        sa.Column("syndicate_address", sa.String(42), nullable=False),
        sa.Column("amount", sa.Text(), nullable=False),
        sa.Column("token_address", sa.String(42), nullable=False),
        sa.Column("source_chain_id", sa.BigInteger(), nullable=False),
        sa.Column("destination_chain_id", sa.BigInteger(), nullable=False),
        sa.Column("use_optimal_route", sa.Boolean(), nullable=False),
        sa.Column("max_fee_percentage", sa.Integer(), nullable=False),
        sa.Column("deadline", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("intent_id", name="uq_intents_intent_id"),
    )
    op.create_index("ix_intents_user", "intents", ["user"], unique=False)
    op.create_index("ix_intents_syndicate_address", "intents", ["syndicate_address"], unique=False)
    op.create_index("ix_intents_status", "intents", ["status"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "intent_pk",
            sa.Integer(),
            sa.ForeignKey("intents.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("chain_id", sa.BigInteger(), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("gas_used", sa.Text(), nullable=True),
        sa.Column("gas_fee", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_transactions_intent_pk", "transactions", ["intent_pk"], unique=False)
    op.create_index("ix_transactions_tx_hash", "transactions", ["tx_hash"], unique=False)
    op.create_index("ix_transactions_chain_id", "transactions", ["chain_id"], unique=False)
    op.create_index("ix_transactions_status", "transactions", ["status"], unique=False)
    # не более одной активной BRIDGE-записи на intent
    op.create_index(
        "uq_transactions_active_bridge",
        "transactions",
        ["intent_pk"],
        unique=True,
        postgresql_where=ACTIVE_BRIDGE,
        sqlite_where=ACTIVE_BRIDGE,
    )


def downgrade() -> None:
    op.drop_index("uq_transactions_active_bridge", table_name="transactions")
    op.drop_index("ix_transactions_status", table_name="transactions")
    op.drop_index("ix_transactions_chain_id", table_name="transactions")
    op.drop_index("ix_transactions_tx_hash", table_name="transactions")
    op.drop_index("ix_transactions_intent_pk", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_intents_status", table_name="intents")
    op.drop_index("ix_intents_syndicate_address", table_name="intents")
    op.drop_index("ix_intents_user", table_name="intents")
    op.drop_table("intents")

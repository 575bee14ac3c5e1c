"""Initial schema for wallets, pioneers, shared protocols and signals.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Monitored wallets
    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("label", sa.String(128), nullable=True),
        sa.Column("success_rate", sa.Float(), nullable=False),
        sa.Column("total_transactions", sa.Integer(), nullable=False),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address"),
    )
    op.create_index("idx_wallets_success_rate", "wallets", ["success_rate"])

    # Pioneer records
    op.create_table(
        "pioneers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("categories", sa.String(256), nullable=False),
        sa.Column("chains", sa.String(256), nullable=False),
        sa.Column("success_rate", sa.Float(), nullable=False),
        sa.Column("early_adoption_success", sa.Float(), nullable=False),
        sa.Column("yield_optimization_roi", sa.Float(), nullable=False),
        sa.Column("cross_chain_efficiency", sa.Float(), nullable=False),
        sa.Column("rwa_innovation_score", sa.Float(), nullable=False),
        sa.Column("treasury_management_score", sa.Float(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("wallet_address"),
    )
    op.create_index("idx_pioneers_success_rate", "pioneers", ["success_rate"])

    # Shared protocol aggregates
    op.create_table(
        "shared_protocols",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("protocol_address", sa.String(42), nullable=False),
        sa.Column("protocol_name", sa.String(128), nullable=False),
        sa.Column("total_pioneers", sa.Integer(), nullable=False),
        sa.Column("avg_success_rate", sa.Float(), nullable=False),
        sa.Column("risk_score", sa.Float(), nullable=False),
        sa.Column("discovery_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tvl_trend_json", sa.Text(), nullable=False),
        sa.Column("related_tokens_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("protocol_address"),
    )
    op.create_index("idx_shared_protocols_last_activity", "shared_protocols", ["last_activity"])
    op.create_index("idx_shared_protocols_discovery", "shared_protocols", ["discovery_timestamp"])
    op.create_index("idx_shared_protocols_risk", "shared_protocols", ["risk_score"])

    # Per-pioneer rows within a shared protocol
    op.create_table(
        "protocol_pioneers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("protocol_address", sa.String(42), nullable=False),
        sa.Column("pioneer_address", sa.String(42), nullable=False),
        sa.Column("first_interaction", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_interaction", sa.DateTime(timezone=True), nullable=False),
        sa.Column("interaction_count", sa.Integer(), nullable=False),
        sa.Column("success_rate", sa.Float(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "protocol_address", "pioneer_address", name="uq_protocol_pioneers_pair"
        ),
    )
    op.create_index("idx_protocol_pioneers_pioneer", "protocol_pioneers", ["pioneer_address"])

    # Emitted signals
    op.create_table(
        "signals",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("signal_type", sa.String(64), nullable=False),
        sa.Column("category", sa.String(32), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("protocol", sa.String(128), nullable=False),
        sa.Column("chain", sa.String(16), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_signals_wallet_ts", "signals", ["wallet_address", "timestamp"])
    op.create_index("idx_signals_type_priority", "signals", ["signal_type", "priority"])
    op.create_index("idx_signals_protocol_chain", "signals", ["protocol", "chain"])


def downgrade() -> None:
    op.drop_index("idx_signals_protocol_chain", table_name="signals")
    op.drop_index("idx_signals_type_priority", table_name="signals")
    op.drop_index("idx_signals_wallet_ts", table_name="signals")
    op.drop_table("signals")

    op.drop_index("idx_protocol_pioneers_pioneer", table_name="protocol_pioneers")
    op.drop_table("protocol_pioneers")

    op.drop_index("idx_shared_protocols_risk", table_name="shared_protocols")
    op.drop_index("idx_shared_protocols_discovery", table_name="shared_protocols")
    op.drop_index("idx_shared_protocols_last_activity", table_name="shared_protocols")
    op.drop_table("shared_protocols")

    op.drop_index("idx_pioneers_success_rate", table_name="pioneers")
    op.drop_table("pioneers")

    op.drop_index("idx_wallets_success_rate", table_name="wallets")
    op.drop_table("wallets")

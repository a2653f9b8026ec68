"""Initial schema for tokens, trades, token holders and the transaction audit log.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tokens table
    op.create_table(
        "tokens",
        sa.Column("mint_address", sa.String(44), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("symbol", sa.Text(), nullable=True),
        sa.Column("uri", sa.Text(), nullable=True),
        sa.Column("bonding_curve_address", sa.String(44), nullable=True),
        sa.Column("creator_wallet", sa.String(44), nullable=True),
        sa.Column("virtual_token_reserves", sa.Numeric(20, 0), nullable=False),
        sa.Column("virtual_sol_reserves", sa.Numeric(20, 0), nullable=False),
        sa.Column("real_token_reserves", sa.Numeric(20, 0), nullable=False),
        sa.Column("token_total_supply", sa.Numeric(20, 0), nullable=False),
        sa.Column("market_cap_usd", sa.Numeric(20, 2), nullable=False),
        sa.Column("bonding_curve_progress", sa.Numeric(5, 2), nullable=False),
        sa.Column("complete", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("mint_address"),
    )
    op.create_index("idx_tokens_market_cap", "tokens", ["market_cap_usd"])
    op.create_index("idx_tokens_created_at", "tokens", ["created_at"])

    # Trades table
    op.create_table(
        "trades",
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("signature", sa.String(88), nullable=False),
        sa.Column("token_mint", sa.String(44), nullable=False),
        sa.Column("sol_amount", sa.Numeric(20, 0), nullable=False),
        sa.Column("token_amount", sa.Numeric(20, 0), nullable=False),
        sa.Column("is_buy", sa.Boolean(), nullable=False),
        sa.Column("user_wallet", sa.String(44), nullable=False),
        sa.Column("virtual_sol_reserves", sa.Numeric(20, 0), nullable=False),
        sa.Column("virtual_token_reserves", sa.Numeric(20, 0), nullable=False),
        sa.Column("price_sol", sa.Numeric(30, 15), nullable=True),
        sa.Column("price_usd", sa.Numeric(30, 10), nullable=True),
        sa.Column("track_volume", sa.Boolean(), nullable=False),
        sa.Column("ix_name", sa.String(8), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("timestamp", "signature"),
    )
    op.create_index("idx_trades_mint_time", "trades", ["token_mint", "timestamp"])

    # Token holders table
    op.create_table(
        "token_holders",
        sa.Column("token_mint", sa.String(44), nullable=False),
        sa.Column("user_wallet", sa.String(44), nullable=False),
        sa.Column("balance", sa.Numeric(20, 0), nullable=False),
        sa.Column("last_updated_slot", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("token_mint", "user_wallet"),
    )
    op.create_index("idx_holders_mint_balance", "token_holders", ["token_mint", "balance"])

    # Transaction audit log
    op.create_table(
        "transactions",
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("signature", sa.String(88), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("signer", sa.String(44), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("instruction_count", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("block_time", "signature"),
    )


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_index("idx_holders_mint_balance", table_name="token_holders")
    op.drop_table("token_holders")
    op.drop_index("idx_trades_mint_time", table_name="trades")
    op.drop_table("trades")
    op.drop_index("idx_tokens_created_at", table_name="tokens")
    op.drop_index("idx_tokens_market_cap", table_name="tokens")
    op.drop_table("tokens")

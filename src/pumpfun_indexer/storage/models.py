"""SQLAlchemy models for persistent storage.

This module defines the database schema for tokens, trades, token holders
and the raw transaction audit log.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Base58 Solana addresses are at most 44 characters; signatures at most 88.
ADDRESS_LENGTH = 44
SIGNATURE_LENGTH = 88


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TokenModel(Base):
    """One row per mint, refined by every creation or trade touching it."""

    __tablename__ = "tokens"

    mint_address: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    symbol: Mapped[str | None] = mapped_column(Text, nullable=True)
    uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    bonding_curve_address: Mapped[str | None] = mapped_column(
        String(ADDRESS_LENGTH), nullable=True
    )
    creator_wallet: Mapped[str | None] = mapped_column(String(ADDRESS_LENGTH), nullable=True)

    # Base units (lamports / raw token units).
    virtual_token_reserves: Mapped[Decimal] = mapped_column(
        Numeric(20, 0), nullable=False, default=Decimal(0)
    )
    virtual_sol_reserves: Mapped[Decimal] = mapped_column(
        Numeric(20, 0), nullable=False, default=Decimal(0)
    )
    real_token_reserves: Mapped[Decimal] = mapped_column(
        Numeric(20, 0), nullable=False, default=Decimal(0)
    )
    token_total_supply: Mapped[Decimal] = mapped_column(
        Numeric(20, 0), nullable=False, default=Decimal(0)
    )

    market_cap_usd: Mapped[Decimal] = mapped_column(
        Numeric(20, 2), nullable=False, default=Decimal(0)
    )
    bonding_curve_progress: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal(0)
    )
    complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_tokens_market_cap", "market_cap_usd"),
        Index("idx_tokens_created_at", "created_at"),
    )


class TradeModel(Base):
    """Insert-only trade facts keyed by (timestamp, signature)."""

    __tablename__ = "trades"

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    signature: Mapped[str] = mapped_column(String(SIGNATURE_LENGTH), primary_key=True)

    token_mint: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    sol_amount: Mapped[Decimal] = mapped_column(Numeric(20, 0), nullable=False)
    token_amount: Mapped[Decimal] = mapped_column(Numeric(20, 0), nullable=False)
    is_buy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    user_wallet: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)

    virtual_sol_reserves: Mapped[Decimal] = mapped_column(Numeric(20, 0), nullable=False)
    virtual_token_reserves: Mapped[Decimal] = mapped_column(Numeric(20, 0), nullable=False)
    price_sol: Mapped[Decimal | None] = mapped_column(Numeric(30, 15), nullable=True)
    price_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 10), nullable=True)

    track_volume: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ix_name: Mapped[str] = mapped_column(String(8), nullable=False)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_trades_mint_time", "token_mint", "timestamp"),)


class TokenHolderModel(Base):
    """Holder balance per (mint, wallet), last-write-wins by slot."""

    __tablename__ = "token_holders"

    token_mint: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), primary_key=True)
    user_wallet: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 0), nullable=False, default=Decimal(0))
    last_updated_slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_holders_mint_balance", "token_mint", "balance"),)


class TransactionModel(Base):
    """Audit log of program transactions that were processed."""

    __tablename__ = "transactions"

    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    signature: Mapped[str] = mapped_column(String(SIGNATURE_LENGTH), primary_key=True)

    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    signer: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    instruction_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=lambda: datetime.now(UTC)
    )

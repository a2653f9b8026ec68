"""Repository pattern implementations for data access.

This module provides data access for tokens, trades, token holders and
the transaction audit log. Every write that must be idempotent or ordered
is expressed as a single ``INSERT ... ON CONFLICT`` statement so the
guarantee comes from the database, not from a read-then-write.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from pumpfun_indexer.storage.models import (
    TokenHolderModel,
    TokenModel,
    TradeModel,
    TransactionModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_VOLUME_WINDOW = timedelta(hours=24)


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT (PostgreSQL or SQLite)."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class TokenDTO:
    """Data transfer object for tokens."""

    mint_address: str
    virtual_token_reserves: Decimal
    virtual_sol_reserves: Decimal
    real_token_reserves: Decimal
    token_total_supply: Decimal
    name: str | None = None
    symbol: str | None = None
    uri: str | None = None
    bonding_curve_address: str | None = None
    creator_wallet: str | None = None
    market_cap_usd: Decimal = Decimal(0)
    bonding_curve_progress: Decimal = Decimal(0)
    complete: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenModel) -> TokenDTO:
        return cls(
            mint_address=model.mint_address,
            name=model.name,
            symbol=model.symbol,
            uri=model.uri,
            bonding_curve_address=model.bonding_curve_address,
            creator_wallet=model.creator_wallet,
            virtual_token_reserves=model.virtual_token_reserves,
            virtual_sol_reserves=model.virtual_sol_reserves,
            real_token_reserves=model.real_token_reserves,
            token_total_supply=model.token_total_supply,
            market_cap_usd=model.market_cap_usd,
            bonding_curve_progress=model.bonding_curve_progress,
            complete=model.complete,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass
class TradeDTO:
    """Data transfer object for trades."""

    signature: str
    token_mint: str
    sol_amount: Decimal
    token_amount: Decimal
    is_buy: bool
    user_wallet: str
    timestamp: datetime
    virtual_sol_reserves: Decimal
    virtual_token_reserves: Decimal
    slot: int
    ix_name: str
    price_sol: Decimal | None = None
    price_usd: Decimal | None = None
    track_volume: bool = True

    @classmethod
    def from_model(cls, model: TradeModel) -> TradeDTO:
        return cls(
            signature=model.signature,
            token_mint=model.token_mint,
            sol_amount=model.sol_amount,
            token_amount=model.token_amount,
            is_buy=model.is_buy,
            user_wallet=model.user_wallet,
            timestamp=model.timestamp,
            virtual_sol_reserves=model.virtual_sol_reserves,
            virtual_token_reserves=model.virtual_token_reserves,
            price_sol=model.price_sol,
            price_usd=model.price_usd,
            track_volume=model.track_volume,
            ix_name=model.ix_name,
            slot=model.slot,
        )

    def values(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "token_mint": self.token_mint,
            "sol_amount": self.sol_amount,
            "token_amount": self.token_amount,
            "is_buy": self.is_buy,
            "user_wallet": self.user_wallet,
            "timestamp": self.timestamp,
            "virtual_sol_reserves": self.virtual_sol_reserves,
            "virtual_token_reserves": self.virtual_token_reserves,
            "price_sol": self.price_sol,
            "price_usd": self.price_usd,
            "track_volume": self.track_volume,
            "ix_name": self.ix_name,
            "slot": self.slot,
        }


@dataclass
class TokenHolderDTO:
    """Data transfer object for token holders."""

    token_mint: str
    user_wallet: str
    balance: Decimal
    last_updated_slot: int
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenHolderModel) -> TokenHolderDTO:
        return cls(
            token_mint=model.token_mint,
            user_wallet=model.user_wallet,
            balance=model.balance,
            last_updated_slot=model.last_updated_slot,
            updated_at=model.updated_at,
        )


@dataclass
class TransactionDTO:
    """Data transfer object for the transaction audit log."""

    signature: str
    slot: int
    block_time: datetime
    signer: str
    success: bool
    instruction_count: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionDTO:
        return cls(
            signature=model.signature,
            slot=model.slot,
            block_time=model.block_time,
            signer=model.signer,
            success=model.success,
            instruction_count=model.instruction_count,
            created_at=model.created_at,
        )


class TokenRepository:
    """Repository for token rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, mint_address: str) -> TokenDTO | None:
        result = await self.session.execute(
            select(TokenModel)
            .where(TokenModel.mint_address == mint_address)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return TokenDTO.from_model(model) if model else None

    async def upsert(self, dto: TokenDTO) -> None:
        """Insert or refine a token row.

        Metadata, creator and curve address keep the first non-null value
        ever written. ``complete`` is OR-ed so it never reverts. Reserves,
        supply, market cap and progress take the incoming values.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, TokenModel).values(
            mint_address=dto.mint_address,
            name=dto.name,
            symbol=dto.symbol,
            uri=dto.uri,
            bonding_curve_address=dto.bonding_curve_address,
            creator_wallet=dto.creator_wallet,
            virtual_token_reserves=dto.virtual_token_reserves,
            virtual_sol_reserves=dto.virtual_sol_reserves,
            real_token_reserves=dto.real_token_reserves,
            token_total_supply=dto.token_total_supply,
            market_cap_usd=dto.market_cap_usd,
            bonding_curve_progress=dto.bonding_curve_progress,
            complete=dto.complete,
            created_at=dto.created_at or now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["mint_address"],
            set_={
                "name": sa.func.coalesce(TokenModel.name, excluded.name),
                "symbol": sa.func.coalesce(TokenModel.symbol, excluded.symbol),
                "uri": sa.func.coalesce(TokenModel.uri, excluded.uri),
                "bonding_curve_address": sa.func.coalesce(
                    TokenModel.bonding_curve_address, excluded.bonding_curve_address
                ),
                "creator_wallet": sa.func.coalesce(
                    TokenModel.creator_wallet, excluded.creator_wallet
                ),
                "virtual_token_reserves": excluded.virtual_token_reserves,
                "virtual_sol_reserves": excluded.virtual_sol_reserves,
                "real_token_reserves": excluded.real_token_reserves,
                "token_total_supply": excluded.token_total_supply,
                "market_cap_usd": excluded.market_cap_usd,
                "bonding_curve_progress": excluded.bonding_curve_progress,
                "complete": sa.or_(TokenModel.complete, excluded.complete),
                "updated_at": excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def list_by_market_cap(self, limit: int = 50) -> list[TokenDTO]:
        result = await self.session.execute(
            select(TokenModel).order_by(TokenModel.market_cap_usd.desc()).limit(limit)
        )
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(sa.func.count()).select_from(TokenModel))
        return int(result.scalar_one())


class TradeRepository:
    """Repository for insert-only trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, signature: str) -> TradeDTO | None:
        result = await self.session.execute(
            select(TradeModel).where(TradeModel.signature == signature).limit(1)
        )
        model = result.scalar_one_or_none()
        return TradeDTO.from_model(model) if model else None

    async def insert_if_absent(self, dto: TradeDTO) -> bool:
        """Insert a trade unless (timestamp, signature) already exists.

        Returns:
            True if a row was inserted, False for a duplicate.
        """
        stmt = _insert(self.session, TradeModel).values(**dto.values())
        stmt = stmt.on_conflict_do_nothing(index_elements=["timestamp", "signature"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def insert_many_if_absent(self, dtos: Sequence[TradeDTO]) -> int:
        """Batch variant of ``insert_if_absent``; returns the number inserted."""
        if not dtos:
            return 0
        stmt = _insert(self.session, TradeModel).values([dto.values() for dto in dtos])
        stmt = stmt.on_conflict_do_nothing(index_elements=["timestamp", "signature"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        return int(result.rowcount or 0)

    async def list_recent(self, token_mint: str, limit: int = 50) -> list[TradeDTO]:
        result = await self.session.execute(
            select(TradeModel)
            .where(TradeModel.token_mint == token_mint)
            .order_by(TradeModel.timestamp.desc())
            .limit(limit)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]

    async def count_for_mint(self, token_mint: str) -> int:
        result = await self.session.execute(
            select(sa.func.count())
            .select_from(TradeModel)
            .where(TradeModel.token_mint == token_mint)
        )
        return int(result.scalar_one())

    async def count(self) -> int:
        result = await self.session.execute(select(sa.func.count()).select_from(TradeModel))
        return int(result.scalar_one())

    async def volume_since(self, token_mint: str, since: datetime | None = None) -> Decimal:
        """Sum of SOL amounts (lamports) traded on ``token_mint`` since ``since``.

        Defaults to the last 24 hours.
        """
        if since is None:
            since = datetime.now(UTC) - DEFAULT_VOLUME_WINDOW
        result = await self.session.execute(
            select(sa.func.coalesce(sa.func.sum(TradeModel.sol_amount), 0)).where(
                TradeModel.token_mint == token_mint,
                TradeModel.timestamp >= since,
                TradeModel.track_volume.is_(True),
            )
        )
        return _to_decimal(result.scalar_one())


class TokenHolderRepository:
    """Repository for holder balances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, token_mint: str, user_wallet: str) -> TokenHolderDTO | None:
        result = await self.session.execute(
            select(TokenHolderModel).where(
                TokenHolderModel.token_mint == token_mint,
                TokenHolderModel.user_wallet == user_wallet,
            ).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return TokenHolderDTO.from_model(model) if model else None

    async def upsert_if_slot_newer(self, dto: TokenHolderDTO) -> bool:
        """Write a balance unless the stored row is from a later slot.

        Equal slots are accepted.

        Returns:
            True if the row was inserted or updated.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, TokenHolderModel).values(
            token_mint=dto.token_mint,
            user_wallet=dto.user_wallet,
            balance=dto.balance,
            last_updated_slot=dto.last_updated_slot,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["token_mint", "user_wallet"],
            set_={
                "balance": stmt.excluded.balance,
                "last_updated_slot": stmt.excluded.last_updated_slot,
                "updated_at": stmt.excluded.updated_at,
            },
            where=TokenHolderModel.last_updated_slot <= stmt.excluded.last_updated_slot,
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        applied = bool(result.rowcount)
        if not applied:
            logger.debug(
                "Ignored stale holder update %s/%s at slot %d",
                dto.token_mint,
                dto.user_wallet,
                dto.last_updated_slot,
            )
        return applied

    async def list_top(self, token_mint: str, limit: int = 20) -> list[TokenHolderDTO]:
        result = await self.session.execute(
            select(TokenHolderModel)
            .where(TokenHolderModel.token_mint == token_mint, TokenHolderModel.balance > 0)
            .order_by(TokenHolderModel.balance.desc())
            .limit(limit)
        )
        return [TokenHolderDTO.from_model(m) for m in result.scalars().all()]


class TransactionRepository:
    """Repository for the transaction audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, signature: str) -> TransactionDTO | None:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.signature == signature).limit(1)
        )
        model = result.scalar_one_or_none()
        return TransactionDTO.from_model(model) if model else None

    async def insert_if_absent(self, dto: TransactionDTO) -> bool:
        stmt = _insert(self.session, TransactionModel).values(
            signature=dto.signature,
            slot=dto.slot,
            block_time=dto.block_time,
            signer=dto.signer,
            success=dto.success,
            instruction_count=dto.instruction_count,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["block_time", "signature"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)


class SessionStateStore:
    """Persistence interface used by the state reconciler, bound to one session.

    All five operations run in the caller's transaction; committing or
    rolling back is up to whoever owns the session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.tokens = TokenRepository(session)
        self.trades = TradeRepository(session)
        self.holders = TokenHolderRepository(session)

    async def upsert_token(self, token: TokenDTO) -> None:
        await self.tokens.upsert(token)

    async def get_token(self, mint_address: str) -> TokenDTO | None:
        return await self.tokens.get(mint_address)

    async def insert_trade_if_absent(self, trade: TradeDTO) -> bool:
        return await self.trades.insert_if_absent(trade)

    async def get_token_holder(self, token_mint: str, user_wallet: str) -> TokenHolderDTO | None:
        return await self.holders.get(token_mint, user_wallet)

    async def upsert_token_holder_if_slot_newer(self, holder: TokenHolderDTO) -> bool:
        return await self.holders.upsert_if_slot_newer(holder)

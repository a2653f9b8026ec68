"""Tests for the database manager."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pumpfun_indexer.storage.database import DatabaseManager, to_async_url
from pumpfun_indexer.storage.repos import TransactionDTO, TransactionRepository


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgresql://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
        ("postgres://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
        ("postgresql+asyncpg://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
    ],
)
def test_to_async_url(url: str, expected: str) -> None:
    assert to_async_url(url) == expected


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


def _audit(signature: str) -> TransactionDTO:
    return TransactionDTO(
        signature=signature,
        slot=1,
        block_time=datetime(2026, 10, 19, tzinfo=UTC),
        signer="",
        success=True,
    )


class TestDatabaseManager:
    """Tests for DatabaseManager."""

    @pytest.mark.asyncio
    async def test_ping(self, db: DatabaseManager) -> None:
        """Test the startup connectivity check."""
        await db.ping()

    @pytest.mark.asyncio
    async def test_session_commits(self, db: DatabaseManager) -> None:
        """Test that a clean exit commits."""
        async with db.get_async_session() as session:
            await TransactionRepository(session).insert_if_absent(_audit("committed"))

        async with db.get_async_session() as session:
            assert await TransactionRepository(session).get("committed") is not None

    @pytest.mark.asyncio
    async def test_session_rolls_back_on_error(self, db: DatabaseManager) -> None:
        """Test that an exception discards the transaction."""
        with pytest.raises(RuntimeError):
            async with db.get_async_session() as session:
                await TransactionRepository(session).insert_if_absent(_audit("discarded"))
                raise RuntimeError("boom")

        async with db.get_async_session() as session:
            assert await TransactionRepository(session).get("discarded") is None

    @pytest.mark.asyncio
    async def test_dispose_allows_reuse(self, db: DatabaseManager) -> None:
        """Test that the engine is recreated after dispose."""
        await db.dispose_async()
        await db.ping()

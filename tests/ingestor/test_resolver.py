"""Tests for the transaction resolver.

All tests mock the JSON-RPC endpoint via aioresponses.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from aioresponses import aioresponses
from conftest import SIGNATURE, SLOT

from pumpfun_indexer.errors import DecodeError, NotFoundAfterRetries, RateLimited, RpcError
from pumpfun_indexer.ingestor.resolver import TransactionResolver

RPC_URL = "https://rpc.example.com/"


def _ok(result) -> dict:
    return {"jsonrpc": "2.0", "id": 1, "result": result}


@pytest.fixture
async def resolver():
    """Resolver with no retry delays."""
    r = TransactionResolver(RPC_URL, max_attempts=5, rate_limit_backoff=0.0, not_indexed_delay=0.0)
    yield r
    await r.close()


class TestResolve:
    """Tests for TransactionResolver.resolve."""

    @pytest.mark.asyncio
    async def test_resolves_first_try(self, resolver, rpc_transaction) -> None:
        """Test a transaction that is already indexed."""
        with aioresponses() as mocked:
            mocked.post(RPC_URL, payload=_ok(rpc_transaction()))

            tx = await resolver.resolve(SIGNATURE)

        assert tx.signature == SIGNATURE
        assert tx.slot == SLOT

    @pytest.mark.asyncio
    async def test_retries_until_indexed(self, resolver, rpc_transaction) -> None:
        """Test that null results are retried until the transaction appears."""
        with aioresponses() as mocked:
            for _ in range(3):
                mocked.post(RPC_URL, payload=_ok(None))
            mocked.post(RPC_URL, payload=_ok(rpc_transaction()))

            tx = await resolver.resolve(SIGNATURE)

        assert tx.signature == SIGNATURE

    @pytest.mark.asyncio
    async def test_not_found_after_retries(self, resolver) -> None:
        """Test that the attempt budget is bounded."""
        with aioresponses() as mocked:
            mocked.post(RPC_URL, payload=_ok(None), repeat=True)

            with pytest.raises(NotFoundAfterRetries) as exc_info:
                await resolver.resolve(SIGNATURE)

        assert exc_info.value.attempts == 5
        assert exc_info.value.signature == SIGNATURE

    @pytest.mark.asyncio
    async def test_rate_limited_every_attempt(self, resolver) -> None:
        """Test that persistent 429s end in NotFoundAfterRetries."""
        with aioresponses() as mocked:
            mocked.post(RPC_URL, status=429, repeat=True)

            with pytest.raises(NotFoundAfterRetries) as exc_info:
                await resolver.resolve(SIGNATURE)

        assert isinstance(exc_info.value.last_error, RateLimited)

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, resolver, rpc_transaction) -> None:
        """Test that HTTP 5xx is treated as a transient transport failure."""
        with aioresponses() as mocked:
            mocked.post(RPC_URL, status=503)
            mocked.post(RPC_URL, payload=_ok(rpc_transaction()))

            tx = await resolver.resolve(SIGNATURE)

        assert tx.signature == SIGNATURE

    @pytest.mark.asyncio
    async def test_rpc_error_not_retried(self, resolver) -> None:
        """Test that an RPC error body surfaces immediately."""
        error = {"code": -32602, "message": "Invalid param: WrongSize"}
        with aioresponses() as mocked:
            mocked.post(RPC_URL, payload={"jsonrpc": "2.0", "id": 1, "error": error})

            with pytest.raises(RpcError) as exc_info:
                await resolver.resolve(SIGNATURE)

        assert exc_info.value.error == error

    @pytest.mark.asyncio
    async def test_client_error_status(self, resolver) -> None:
        """Test that other 4xx statuses raise RpcError."""
        with aioresponses() as mocked:
            mocked.post(RPC_URL, status=401, body="unauthorized")

            with pytest.raises(RpcError):
                await resolver.resolve(SIGNATURE)

    @pytest.mark.asyncio
    async def test_malformed_result(self, resolver) -> None:
        """Test that a malformed transaction raises DecodeError."""
        with aioresponses() as mocked:
            mocked.post(RPC_URL, payload=_ok({"slot": 1}))

            with pytest.raises(DecodeError):
                await resolver.resolve(SIGNATURE)


class TestBackoff:
    """Tests for retry delays."""

    @pytest.mark.asyncio
    async def test_rate_limit_backoff_is_exponential(self, rpc_transaction) -> None:
        """Test 429 delays of base * 2**(attempt-1)."""
        resolver = TransactionResolver(RPC_URL, rate_limit_backoff=1.0)
        sleep = AsyncMock()
        with aioresponses() as mocked, patch(
            "pumpfun_indexer.ingestor.resolver.asyncio.sleep", sleep
        ):
            for _ in range(3):
                mocked.post(RPC_URL, status=429)
            mocked.post(RPC_URL, payload=_ok(rpc_transaction()))

            await resolver.resolve(SIGNATURE)
        await resolver.close()

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_not_indexed_delay_is_linear(self) -> None:
        """Test not-indexed delays of delay * attempt, with no sleep after the last attempt."""
        resolver = TransactionResolver(RPC_URL, max_attempts=3, not_indexed_delay=0.5)
        sleep = AsyncMock()
        with aioresponses() as mocked, patch(
            "pumpfun_indexer.ingestor.resolver.asyncio.sleep", sleep
        ):
            mocked.post(RPC_URL, payload=_ok(None), repeat=True)

            with pytest.raises(NotFoundAfterRetries):
                await resolver.resolve(SIGNATURE)
        await resolver.close()

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    def test_invalid_attempts(self) -> None:
        """Test max_attempts validation."""
        with pytest.raises(ValueError):
            TransactionResolver(RPC_URL, max_attempts=0)

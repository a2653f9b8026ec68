"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pumpfun_indexer.config import clear_settings_cache
from pumpfun_indexer.parser.constants import (
    PUMP_FUN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from pumpfun_indexer.storage.models import Base

# 44-character base58 strings, the length of a real Solana address.
MINT = "Mint111111111111111111111111111111111111pump"
TRADER = "Trader1111111111111111111111111111111111111A"
TRADER_ATA = "TraderAta11111111111111111111111111111111111"
CURVE = "Curve11111111111111111111111111111111111111B"
CURVE_ATA = "CurveAta111111111111111111111111111111111111"
SIGNATURE = "5" * 87 + "x"

BLOCK_TIME = 1_760_000_000
SLOT = 300_000_000

RpcTxFactory = Callable[..., dict[str, Any]]


def _token_balance(index: int, owner: str, amount: int, mint: str = MINT) -> dict[str, Any]:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": 6},
    }


def build_rpc_transaction(
    *,
    signature: str = SIGNATURE,
    slot: int = SLOT,
    block_time: int | None = BLOCK_TIME,
    program_id: str = PUMP_FUN_PROGRAM_ID,
    trader_sol: tuple[int, int] = (10_000_000_000, 9_000_000_000),
    curve_sol: tuple[int, int] = (40_000_000_000, 41_000_000_000),
    trader_tokens: tuple[int | None, int | None] = (1_000, 1_500),
    curve_tokens: tuple[int | None, int] = (800_000_000_000_000, 799_999_999_999_500),
    logs: list[str] | None = None,
    err: Any = None,
) -> dict[str, Any]:
    """Build a jsonParsed ``getTransaction`` result for a bonding-curve trade.

    Account layout: trader (signer), trader ATA, mint, curve, curve ATA,
    system program, token program, pump.fun program. A ``None`` token
    amount leaves that balance entry out.
    """
    account_keys = [
        {"pubkey": TRADER, "signer": True, "writable": True},
        {"pubkey": TRADER_ATA, "signer": False, "writable": True},
        {"pubkey": MINT, "signer": False, "writable": False},
        {"pubkey": CURVE, "signer": False, "writable": True},
        {"pubkey": CURVE_ATA, "signer": False, "writable": True},
        {"pubkey": SYSTEM_PROGRAM_ID, "signer": False, "writable": False},
        {"pubkey": TOKEN_PROGRAM_ID, "signer": False, "writable": False},
        {"pubkey": program_id, "signer": False, "writable": False},
    ]
    pre_token_balances = []
    if trader_tokens[0] is not None:
        pre_token_balances.append(_token_balance(1, TRADER, trader_tokens[0]))
    if curve_tokens[0] is not None:
        pre_token_balances.append(_token_balance(4, CURVE, curve_tokens[0]))

    post_token_balances = []
    if trader_tokens[1] is not None:
        post_token_balances.append(_token_balance(1, TRADER, trader_tokens[1]))
    post_token_balances.append(_token_balance(4, CURVE, curve_tokens[1]))

    return {
        "slot": slot,
        "blockTime": block_time,
        "transaction": {
            "signatures": [signature],
            "message": {
                "accountKeys": account_keys,
                "instructions": [
                    {"programId": program_id, "accounts": [MINT, CURVE], "data": "3Bxs4h24hBtQy9rw"},
                ],
            },
        },
        "meta": {
            "err": err,
            "fee": 5_000,
            "preBalances": [trader_sol[0], 2_039_280, 1_461_600, curve_sol[0], 2_039_280, 1, 1, 1],
            "postBalances": [trader_sol[1], 2_039_280, 1_461_600, curve_sol[1], 2_039_280, 1, 1, 1],
            "preTokenBalances": pre_token_balances,
            "postTokenBalances": post_token_balances,
            "logMessages": logs if logs is not None else [f"Program {program_id} invoke [1]"],
        },
    }


def build_create_transaction(**kwargs: Any) -> dict[str, Any]:
    """A token creation: the curve ATA is funded with the full supply, no pre balances."""
    kwargs.setdefault(
        "logs",
        [
            f"Program {PUMP_FUN_PROGRAM_ID} invoke [1]",
            "Program log: Instruction: Create",
            "Program log: name: FooCoin, symbol: FOO, uri: https://ipfs.io/ipfs/QmFoo",
        ],
    )
    kwargs.setdefault("trader_tokens", (None, None))
    kwargs.setdefault("curve_tokens", (None, 1_000_000_000_000_000))
    kwargs.setdefault("curve_sol", (0, 1_231_920))
    return build_rpc_transaction(**kwargs)


@pytest.fixture
def rpc_transaction() -> RpcTxFactory:
    """Factory for trade ``getTransaction`` results."""
    return build_rpc_transaction


@pytest.fixture
def create_transaction() -> RpcTxFactory:
    """Factory for token creation ``getTransaction`` results."""
    return build_create_transaction


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Make every test load settings from its own environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session

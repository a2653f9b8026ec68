"""Chain and protocol constants used by the event parser."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

LAMPORTS_PER_SOL = 1_000_000_000

PUMP_FUN_PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
RENT_SYSVAR_ID = "SysvarRent111111111111111111111111111111111"
PUMP_FUN_EVENT_AUTHORITY = "Ce6TQqeHC9p8KetsN6JsjHK7UTZk7nasjjnr7XxXp9F1"

# Accounts that can never be a bonding curve.
WELL_KNOWN_ACCOUNTS = frozenset(
    {
        SYSTEM_PROGRAM_ID,
        TOKEN_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        RENT_SYSVAR_ID,
        PUMP_FUN_EVENT_AUTHORITY,
    }
)

DEFAULT_VIRTUAL_SOL_OFFSET = 30 * LAMPORTS_PER_SOL
DEFAULT_BONDING_COMPLETE_LAMPORTS = 85 * LAMPORTS_PER_SOL
DEFAULT_TOKEN_TOTAL_SUPPLY = 1_000_000_000_000_000  # 1B tokens at 6 decimals


@dataclass(frozen=True)
class ProtocolParams:
    """Protocol-specific constants of the bonding-curve program.

    These are inferred from the program's conventions, not derived on-chain,
    so they are configurable.
    """

    program_id: str = PUMP_FUN_PROGRAM_ID
    native_mint: str = WRAPPED_SOL_MINT
    virtual_sol_offset: Decimal = Decimal(DEFAULT_VIRTUAL_SOL_OFFSET)
    bonding_complete_lamports: Decimal = Decimal(DEFAULT_BONDING_COMPLETE_LAMPORTS)
    token_total_supply: Decimal = Decimal(DEFAULT_TOKEN_TOTAL_SUPPLY)


DEFAULT_PROTOCOL = ProtocolParams()

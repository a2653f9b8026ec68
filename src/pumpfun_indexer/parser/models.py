"""Result types produced by the event parser."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal


@dataclass(frozen=True)
class ParsedTrade:
    """A buy or sell against a bonding curve.

    Amounts are in base units: lamports for SOL, raw token units for the mint.
    """

    signature: str
    token_mint: str
    sol_amount: Decimal
    token_amount: Decimal
    is_buy: bool
    user_wallet: str
    timestamp: datetime
    virtual_sol_reserves: Decimal
    virtual_token_reserves: Decimal
    price_sol: Decimal | None
    price_usd: Decimal | None
    slot: int
    track_volume: bool = True

    @property
    def ix_name(self) -> Literal["buy", "sell"]:
        return "buy" if self.is_buy else "sell"


@dataclass(frozen=True)
class ParsedToken:
    """A newly created mint and its initial bonding-curve state."""

    mint_address: str
    creator_wallet: str | None
    created_at: datetime
    virtual_token_reserves: Decimal
    virtual_sol_reserves: Decimal
    real_token_reserves: Decimal
    token_total_supply: Decimal
    name: str | None = None
    symbol: str | None = None
    uri: str | None = None
    bonding_curve_address: str | None = None
    market_cap_usd: Decimal = Decimal(0)
    bonding_curve_progress: Decimal = Decimal(0)
    complete: bool = False


@dataclass(frozen=True)
class TokenMetadata:
    """Best-effort metadata scraped from log lines."""

    name: str | None = None
    symbol: str | None = None
    uri: str | None = None


@dataclass(frozen=True)
class TokenHints:
    """Token facts recoverable from any transaction touching a mint."""

    name: str | None = None
    symbol: str | None = None
    uri: str | None = None
    bonding_curve_address: str | None = None


@dataclass(frozen=True)
class BondingCurveReserves:
    """Reserve snapshot of a bonding curve after a transaction."""

    real_token_reserves: Decimal
    real_sol_reserves: Decimal
    virtual_token_reserves: Decimal
    virtual_sol_reserves: Decimal

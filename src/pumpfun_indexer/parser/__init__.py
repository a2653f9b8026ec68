"""Event parser - pure extraction of trades and token creations."""

from pumpfun_indexer.parser.bonding_curve import (
    find_bonding_curve_address,
    find_bonding_curve_reserves,
)
from pumpfun_indexer.parser.constants import DEFAULT_PROTOCOL, ProtocolParams
from pumpfun_indexer.parser.metadata import extract_metadata_from_logs
from pumpfun_indexer.parser.models import (
    BondingCurveReserves,
    ParsedToken,
    ParsedTrade,
    TokenHints,
    TokenMetadata,
)
from pumpfun_indexer.parser.tokens import extract_token_hints, parse_token_creation
from pumpfun_indexer.parser.trades import parse_trade

__all__ = [
    "DEFAULT_PROTOCOL",
    "BondingCurveReserves",
    "ParsedToken",
    "ParsedTrade",
    "ProtocolParams",
    "TokenHints",
    "TokenMetadata",
    "extract_metadata_from_logs",
    "extract_token_hints",
    "find_bonding_curve_address",
    "find_bonding_curve_reserves",
    "parse_token_creation",
    "parse_trade",
]

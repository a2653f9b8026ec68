"""Token-creation extraction and token hints."""

from __future__ import annotations

from datetime import UTC, datetime

from pumpfun_indexer.ingestor.models import MaterializedTransaction
from pumpfun_indexer.parser.bonding_curve import (
    find_bonding_curve_address,
    find_bonding_curve_reserves,
)
from pumpfun_indexer.parser.constants import DEFAULT_PROTOCOL, ProtocolParams
from pumpfun_indexer.parser.metadata import extract_metadata_from_logs
from pumpfun_indexer.parser.models import ParsedToken, TokenHints


def parse_token_creation(
    tx: MaterializedTransaction,
    *,
    params: ProtocolParams = DEFAULT_PROTOCOL,
    now: datetime | None = None,
) -> ParsedToken | None:
    """Detect a brand-new mint in ``tx``.

    A mint is new when it shows up in post token balances without any pre
    token balance for the same mint. Market cap and progress are left at
    zero for the reconciler to fill in.
    """
    if not tx.invokes_program(params.program_id) or tx.meta is None:
        return None

    pre_mints = {balance.mint for balance in tx.meta.pre_token_balances}
    for post in tx.meta.post_token_balances:
        if post.mint == params.native_mint or post.mint in pre_mints:
            continue

        hints = extract_token_hints(tx, post.mint, params=params)
        reserves = find_bonding_curve_reserves(tx, post.mint, params=params)
        return ParsedToken(
            mint_address=post.mint,
            creator_wallet=tx.signer,
            created_at=tx.block_time or now or datetime.now(UTC),
            virtual_token_reserves=reserves.virtual_token_reserves,
            virtual_sol_reserves=reserves.virtual_sol_reserves,
            real_token_reserves=reserves.real_token_reserves,
            token_total_supply=params.token_total_supply,
            name=hints.name,
            symbol=hints.symbol,
            uri=hints.uri,
            bonding_curve_address=hints.bonding_curve_address,
        )

    return None


def extract_token_hints(
    tx: MaterializedTransaction,
    mint: str,
    *,
    params: ProtocolParams = DEFAULT_PROTOCOL,
) -> TokenHints:
    """Collect metadata and the curve address for ``mint`` from ``tx``."""
    metadata = extract_metadata_from_logs(tx.log_messages)
    return TokenHints(
        name=metadata.name,
        symbol=metadata.symbol,
        uri=metadata.uri,
        bonding_curve_address=find_bonding_curve_address(tx, mint, params),
    )

"""Bonding-curve account and reserve heuristics.

Nothing here derives the curve from program-derived-address rules. The
account layout of pump.fun instructions is used instead, so results are
best-effort and callers must treat ``None`` (or zero reserves) as a normal
outcome.
"""

from decimal import Decimal

from pumpfun_indexer.ingestor.models import MaterializedTransaction
from pumpfun_indexer.parser.constants import DEFAULT_PROTOCOL, WELL_KNOWN_ACCOUNTS, ProtocolParams
from pumpfun_indexer.parser.models import BondingCurveReserves

# Curve accounts sit at these positions in buy/sell/create instructions.
CANDIDATE_POSITIONS = range(3, 8)
BASE58_PUBKEY_LENGTH = 44


def find_bonding_curve_address(
    tx: MaterializedTransaction,
    mint: str,
    params: ProtocolParams = DEFAULT_PROTOCOL,
) -> str | None:
    """Guess the bonding-curve account of ``mint`` from the account keys.

    A candidate is writable, not a signer, not the mint itself and not a
    well-known program or sysvar. Only positions 3-7 holding a 44-character
    base58 key are considered; the first match in list order wins.
    """
    excluded = WELL_KNOWN_ACCOUNTS | {mint, params.native_mint, params.program_id}
    for index, key in enumerate(tx.account_keys):
        if not key.is_writable or key.is_signer:
            continue
        if key.address in excluded:
            continue
        if index in CANDIDATE_POSITIONS and len(key.address) == BASE58_PUBKEY_LENGTH:
            return key.address
    return None


def find_bonding_curve_reserves(
    tx: MaterializedTransaction,
    mint: str,
    *,
    exclude_account_index: int | None = None,
    params: ProtocolParams = DEFAULT_PROTOCOL,
) -> BondingCurveReserves:
    """Read the curve's reserves from post-transaction balances.

    The first post token balance of ``mint`` on an account other than
    ``exclude_account_index`` is taken as the curve's token vault. Its owner's
    post native balance is the real SOL reserve. Missing data yields zeros.
    """
    real_token = Decimal(0)
    real_sol = Decimal(0)

    if tx.meta is not None:
        for balance in tx.meta.post_token_balances:
            if balance.mint != mint or balance.account_index == exclude_account_index:
                continue
            real_token = balance.amount
            if balance.owner is not None:
                owner_index = tx.account_index(balance.owner)
                if owner_index is not None and owner_index < len(tx.meta.post_balances):
                    real_sol = Decimal(tx.meta.post_balances[owner_index])
            break

    return BondingCurveReserves(
        real_token_reserves=real_token,
        real_sol_reserves=real_sol,
        virtual_token_reserves=real_token,
        virtual_sol_reserves=real_sol + params.virtual_sol_offset,
    )

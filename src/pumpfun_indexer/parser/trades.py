"""Trade extraction from materialized transactions.

The trade is recovered from token balance deltas: the first non-native
token balance whose amount changed is the trader's token account. There is
no instruction decoding, so a transaction moving several mints reports only
the first one.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from pumpfun_indexer.ingestor.models import MaterializedTransaction, TokenBalance, TransactionMeta
from pumpfun_indexer.parser.bonding_curve import find_bonding_curve_reserves
from pumpfun_indexer.parser.constants import DEFAULT_PROTOCOL, ProtocolParams
from pumpfun_indexer.parser.models import ParsedTrade


def _pre_amount(meta: TransactionMeta, post: TokenBalance) -> Decimal:
    for pre in meta.pre_token_balances:
        if pre.account_index == post.account_index and pre.mint == post.mint:
            return pre.amount
    return Decimal(0)


def _sol_change(tx: MaterializedTransaction, wallet: str) -> Decimal:
    """Absolute native balance change of ``wallet``, zero if it is not listed."""
    index = tx.account_index(wallet)
    if index is None:
        return Decimal(0)
    balances = tx.native_balance_change(index)
    if balances is None:
        return Decimal(0)
    pre, post = balances
    return Decimal(abs(pre - post))


def _usd(price: float) -> Decimal:
    try:
        return Decimal(str(price))
    except InvalidOperation:
        return Decimal(0)


def parse_trade(
    tx: MaterializedTransaction,
    usd_price: float,
    *,
    params: ProtocolParams = DEFAULT_PROTOCOL,
    now: datetime | None = None,
) -> ParsedTrade | None:
    """Extract a buy or sell from ``tx``.

    Args:
        tx: Resolved transaction.
        usd_price: Current SOL/USD price used for ``price_usd``.
        params: Protocol constants.
        now: Timestamp used when the transaction has no block time.

    Returns:
        The trade, or None if the program is not invoked or no token
        balance changed.
    """
    if not tx.invokes_program(params.program_id) or tx.meta is None:
        return None

    for post in tx.meta.post_token_balances:
        if post.mint == params.native_mint:
            continue

        delta = post.amount - _pre_amount(tx.meta, post)
        if delta == 0:
            continue

        wallet = post.owner or tx.signer or ""
        token_amount = abs(delta)
        sol_amount = _sol_change(tx, wallet) if wallet else Decimal(0)
        reserves = find_bonding_curve_reserves(
            tx,
            post.mint,
            exclude_account_index=post.account_index,
            params=params,
        )

        price_sol = sol_amount / token_amount if token_amount else Decimal(0)
        price_usd = price_sol * _usd(usd_price)

        return ParsedTrade(
            signature=tx.signature,
            token_mint=post.mint,
            sol_amount=sol_amount,
            token_amount=token_amount,
            is_buy=delta > 0,
            user_wallet=wallet,
            timestamp=tx.block_time or now or datetime.now(UTC),
            virtual_sol_reserves=reserves.virtual_sol_reserves,
            virtual_token_reserves=reserves.virtual_token_reserves,
            price_sol=price_sol,
            price_usd=price_usd,
            slot=tx.slot,
        )

    return None

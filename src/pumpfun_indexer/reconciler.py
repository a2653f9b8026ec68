"""State reconciler: parsed events -> token, trade and holder state.

The reconciler holds no state of its own. Idempotence and slot ordering
come from the store's conditional writes (insert-if-absent for trades,
slot-guarded upsert for holders); the reconciler never retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Protocol

from pumpfun_indexer.parser.constants import DEFAULT_PROTOCOL, ProtocolParams
from pumpfun_indexer.parser.models import ParsedToken, ParsedTrade, TokenHints
from pumpfun_indexer.storage.repos import TokenDTO, TokenHolderDTO, TradeDTO

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
HUNDRED = Decimal(100)
# Largest value tokens.market_cap_usd (NUMERIC(20, 2)) can hold.
MAX_MARKET_CAP = Decimal("999999999999999999.99")


class StateStore(Protocol):
    """Persistence operations the reconciler depends on."""

    async def upsert_token(self, token: TokenDTO) -> None: ...

    async def get_token(self, mint_address: str) -> TokenDTO | None: ...

    async def insert_trade_if_absent(self, trade: TradeDTO) -> bool: ...

    async def get_token_holder(self, token_mint: str, user_wallet: str) -> TokenHolderDTO | None: ...

    async def upsert_token_holder_if_slot_newer(self, holder: TokenHolderDTO) -> bool: ...


@dataclass
class ReconcileOutcome:
    """What a single ``apply`` call wrote."""

    token_created: bool = False
    token_updated: bool = False
    trade_inserted: bool = False
    duplicate_trade: bool = False
    holder_balance: Decimal | None = None
    holder_written: bool = False


def trade_to_dto(trade: ParsedTrade) -> TradeDTO:
    return TradeDTO(
        signature=trade.signature,
        token_mint=trade.token_mint,
        sol_amount=trade.sol_amount,
        token_amount=trade.token_amount,
        is_buy=trade.is_buy,
        user_wallet=trade.user_wallet,
        timestamp=trade.timestamp,
        virtual_sol_reserves=trade.virtual_sol_reserves,
        virtual_token_reserves=trade.virtual_token_reserves,
        price_sol=trade.price_sol,
        price_usd=trade.price_usd,
        track_volume=trade.track_volume,
        ix_name=trade.ix_name,
        slot=trade.slot,
    )


class StateReconciler:
    """Apply parsed trades and token creations to persisted state.

    Example:
        ```python
        reconciler = StateReconciler(settings.protocol.params())
        async with db.get_async_session() as session:
            outcome = await reconciler.apply(
                SessionStateStore(session),
                trade=trade,
                token_creation=token,
                usd_price=usd,
            )
        ```
    """

    def __init__(self, params: ProtocolParams = DEFAULT_PROTOCOL) -> None:
        self._params = params

    @staticmethod
    def market_cap(
        virtual_sol_reserves: Decimal,
        virtual_token_reserves: Decimal,
        token_total_supply: Decimal,
        usd_price: Decimal,
    ) -> Decimal:
        """USD market cap from the curve's spot price, in cents.

        A nearly drained token vault makes the spot price explode; the
        result is clamped to ``MAX_MARKET_CAP`` so it always fits the column.
        """
        if virtual_token_reserves <= 0:
            return Decimal(0).quantize(CENTS)
        with localcontext() as ctx:
            ctx.prec = 60
            price_sol = virtual_sol_reserves / virtual_token_reserves
            cap = price_sol * token_total_supply * usd_price
            if cap > MAX_MARKET_CAP:
                logger.warning("Market cap %s exceeds the column range, clamping", cap)
                return MAX_MARKET_CAP
            return max(cap, Decimal(0)).quantize(CENTS)

    def progress(self, virtual_sol_reserves: Decimal) -> Decimal:
        """Bonding-curve progress in percent, clamped to [0, 100]."""
        raw = virtual_sol_reserves / self._params.bonding_complete_lamports * HUNDRED
        return min(max(raw, Decimal(0)), HUNDRED).quantize(CENTS)

    async def _apply_token_creation(
        self, store: StateStore, token: ParsedToken, usd: Decimal
    ) -> None:
        await store.upsert_token(
            TokenDTO(
                mint_address=token.mint_address,
                name=token.name,
                symbol=token.symbol,
                uri=token.uri,
                bonding_curve_address=token.bonding_curve_address,
                creator_wallet=token.creator_wallet,
                virtual_token_reserves=token.virtual_token_reserves,
                virtual_sol_reserves=token.virtual_sol_reserves,
                real_token_reserves=token.real_token_reserves,
                token_total_supply=token.token_total_supply,
                market_cap_usd=self.market_cap(
                    token.virtual_sol_reserves,
                    token.virtual_token_reserves,
                    token.token_total_supply,
                    usd,
                ),
                bonding_curve_progress=token.bonding_curve_progress,
                complete=token.complete,
                created_at=token.created_at,
            )
        )
        logger.info("Token created: %s (%s)", token.mint_address, token.symbol or "?")

    async def _apply_trade_to_token(
        self,
        store: StateStore,
        trade: ParsedTrade,
        usd: Decimal,
        hints: TokenHints,
    ) -> None:
        token = await store.get_token(trade.token_mint)
        if token is None:
            token = TokenDTO(
                mint_address=trade.token_mint,
                creator_wallet=trade.user_wallet,
                virtual_token_reserves=trade.virtual_token_reserves,
                virtual_sol_reserves=trade.virtual_sol_reserves,
                real_token_reserves=trade.virtual_token_reserves,
                token_total_supply=self._params.token_total_supply,
                created_at=trade.timestamp,
            )

        token.name = token.name or hints.name
        token.symbol = token.symbol or hints.symbol
        token.uri = token.uri or hints.uri
        token.bonding_curve_address = token.bonding_curve_address or hints.bonding_curve_address

        # Trades carry the freshest reserve snapshot.
        token.virtual_sol_reserves = trade.virtual_sol_reserves
        token.virtual_token_reserves = trade.virtual_token_reserves
        token.real_token_reserves = trade.virtual_token_reserves

        token.market_cap_usd = self.market_cap(
            token.virtual_sol_reserves,
            token.virtual_token_reserves,
            token.token_total_supply,
            usd,
        )
        token.bonding_curve_progress = self.progress(token.virtual_sol_reserves)
        token.complete = token.complete or token.bonding_curve_progress >= HUNDRED

        await store.upsert_token(token)
        logger.debug(
            "Token %s: market cap $%s, progress %s%%, complete=%s",
            token.mint_address,
            token.market_cap_usd,
            token.bonding_curve_progress,
            token.complete,
        )

    async def _apply_trade_to_holder(
        self, store: StateStore, trade: ParsedTrade, outcome: ReconcileOutcome
    ) -> None:
        """Apply the trade's balance delta to the trader's holder row.

        A sell that leaves the balance at zero writes nothing, so the stored
        row keeps its last positive balance and may still rank in
        ``TokenHolderRepository.list_top``. The computed balance is reported
        in ``outcome.holder_balance`` either way.
        """
        holder = await store.get_token_holder(trade.token_mint, trade.user_wallet)
        balance = holder.balance if holder is not None else Decimal(0)

        if trade.is_buy:
            new_balance = balance + trade.token_amount
        else:
            new_balance = balance - min(trade.token_amount, balance)

        outcome.holder_balance = new_balance
        if new_balance <= 0 and not trade.is_buy:
            logger.debug("Holder %s sold out of %s", trade.user_wallet, trade.token_mint)
            return

        outcome.holder_written = await store.upsert_token_holder_if_slot_newer(
            TokenHolderDTO(
                token_mint=trade.token_mint,
                user_wallet=trade.user_wallet,
                balance=new_balance,
                last_updated_slot=trade.slot,
            )
        )

    async def apply(
        self,
        store: StateStore,
        *,
        trade: ParsedTrade | None = None,
        token_creation: ParsedToken | None = None,
        usd_price: float,
        hints: TokenHints | None = None,
    ) -> ReconcileOutcome:
        """Apply a token creation and/or a trade from one transaction.

        Args:
            store: Persistence operations, usually bound to one DB transaction.
            trade: Parsed trade, if any.
            token_creation: Parsed token creation, if any.
            usd_price: SOL/USD price used for derived USD values.
            hints: Metadata and curve address from the same transaction,
                used to fill gaps on the token row.

        Returns:
            What was written.
        """
        outcome = ReconcileOutcome()
        usd = Decimal(str(usd_price))

        if token_creation is not None:
            await self._apply_token_creation(store, token_creation, usd)
            outcome.token_created = True

        if trade is None:
            return outcome

        outcome.trade_inserted = await store.insert_trade_if_absent(trade_to_dto(trade))
        outcome.duplicate_trade = not outcome.trade_inserted

        await self._apply_trade_to_token(store, trade, usd, hints or TokenHints())
        outcome.token_updated = True

        if outcome.duplicate_trade:
            # Redelivered signature: the holder delta was applied the first time.
            logger.debug("Trade %s already recorded, skipping holder update", trade.signature)
            return outcome

        await self._apply_trade_to_holder(store, trade, outcome)
        logger.info(
            "Trade %s: %s %s of %s by %s",
            trade.signature,
            trade.ix_name,
            trade.token_amount,
            trade.token_mint,
            trade.user_wallet,
        )
        return outcome

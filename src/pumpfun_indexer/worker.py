"""Pipeline worker: bus -> resolve -> parse -> reconcile.

Each envelope is processed in its own task, bounded by a semaphore, so a
slow signature never holds up the next one. Failures are isolated per
signature: they are logged, counted by kind and dropped. Reprocessing a
signature later is safe because every write is idempotent.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from pumpfun_indexer.errors import (
    DecodeError,
    IndexerError,
    NotFoundAfterRetries,
    PersistenceError,
    QuoteUnavailable,
    RpcError,
)
from pumpfun_indexer.parser import (
    DEFAULT_PROTOCOL,
    ProtocolParams,
    extract_token_hints,
    parse_token_creation,
    parse_trade,
)
from pumpfun_indexer.reconciler import ReconcileOutcome, StateReconciler
from pumpfun_indexer.storage.repos import SessionStateStore, TransactionDTO, TransactionRepository

if TYPE_CHECKING:
    from pumpfun_indexer.ingestor.bus import EventBus
    from pumpfun_indexer.ingestor.models import MaterializedTransaction, SignatureEnvelope
    from pumpfun_indexer.ingestor.price import PriceOracleCache
    from pumpfun_indexer.ingestor.resolver import TransactionResolver
    from pumpfun_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 16


@dataclass
class WorkerStats:
    """Counters for the worker."""

    received: int = 0
    processed: int = 0
    trades_inserted: int = 0
    duplicate_trades: int = 0
    tokens_created: int = 0
    skipped: int = 0
    failures: dict[str, int] = field(default_factory=dict)
    last_error: str | None = None
    last_processed_time: datetime | None = None

    def record_failure(self, kind: str, error: Exception) -> None:
        self.failures[kind] = self.failures.get(kind, 0) + 1
        self.last_error = str(error)

    @property
    def total_failures(self) -> int:
        return sum(self.failures.values())


class PipelineWorker:
    """Consume signature envelopes and persist what they contain.

    Example:
        ```python
        worker = PipelineWorker(
            bus=bus,
            resolver=resolver,
            price_cache=price_cache,
            db=db_manager,
        )
        await worker.run()  # until stop()
        ```
    """

    def __init__(
        self,
        *,
        bus: EventBus,
        resolver: TransactionResolver,
        price_cache: PriceOracleCache,
        db: DatabaseManager,
        reconciler: StateReconciler | None = None,
        params: ProtocolParams = DEFAULT_PROTOCOL,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._bus = bus
        self._resolver = resolver
        self._price_cache = price_cache
        self._db = db
        self._params = params
        self._reconciler = reconciler or StateReconciler(params)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight: set[asyncio.Task[None]] = set()
        self._stats = WorkerStats()
        self._running = False
        self._finished: asyncio.Event | None = None

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self) -> None:
        """Drain the bus until it is closed or ``stop()`` is called."""
        if self._running:
            raise RuntimeError("Worker already running")
        self._running = True
        self._finished = asyncio.Event()
        logger.info("Pipeline worker started")
        try:
            async with contextlib.aclosing(self._bus.subscribe()) as envelopes:
                async for envelope in envelopes:
                    if not self._running:
                        break
                    self._stats.received += 1
                    await self._semaphore.acquire()
                    task = asyncio.create_task(self._process_and_release(envelope))
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)
        finally:
            self._running = False
            await self.wait_idle()
            self._finished.set()
            logger.info("Pipeline worker stopped")

    async def wait_idle(self) -> None:
        """Wait for in-flight signatures to finish."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def stop(self) -> None:
        """Stop accepting envelopes and let in-flight work finish."""
        self._running = False
        await self._bus.close()
        if self._finished is not None:
            await self._finished.wait()

    async def _process_and_release(self, envelope: SignatureEnvelope) -> None:
        try:
            await self.process(envelope)
        finally:
            self._semaphore.release()

    async def process(self, envelope: SignatureEnvelope) -> ReconcileOutcome | None:
        """Resolve, parse and reconcile one signature.

        Never raises for per-signature failures; they are logged and
        counted in ``stats.failures``.

        Returns:
            The reconcile outcome, or None if the signature was skipped or
            failed.
        """
        signature = envelope.signature
        if envelope.failed:
            self._stats.skipped += 1
            return None

        try:
            outcome = await self._process(signature)
        except NotFoundAfterRetries as e:
            self._stats.record_failure("not_found", e)
            logger.warning("Dropping %s: %s", signature, e)
            return None
        except RpcError as e:
            self._stats.record_failure("rpc_error", e)
            logger.warning("RPC error for %s: %s", signature, e)
            return None
        except DecodeError as e:
            self._stats.record_failure("decode_error", e)
            logger.warning("Malformed transaction %s: %s", signature, e)
            return None
        except QuoteUnavailable as e:
            self._stats.record_failure("quote_unavailable", e)
            logger.warning("No SOL/USD quote for %s: %s", signature, e)
            return None
        except PersistenceError as e:
            self._stats.record_failure("persistence_error", e)
            logger.error("Failed to persist %s: %s", signature, e)
            return None
        except IndexerError as e:
            self._stats.record_failure("other", e)
            logger.warning("Failed to process %s: %s", signature, e)
            return None
        except Exception as e:
            self._stats.record_failure("unexpected", e)
            logger.exception("Unexpected error processing %s: %s", signature, e)
            return None

        self._stats.last_processed_time = datetime.now(UTC)
        if outcome is None:
            self._stats.skipped += 1
            return None

        self._stats.processed += 1
        if outcome.trade_inserted:
            self._stats.trades_inserted += 1
        if outcome.duplicate_trade:
            self._stats.duplicate_trades += 1
        if outcome.token_created:
            self._stats.tokens_created += 1
        return outcome

    async def _process(self, signature: str) -> ReconcileOutcome | None:
        tx = await self._resolver.resolve(signature)
        if not tx.invokes_program(self._params.program_id):
            logger.debug("Transaction %s does not invoke %s", signature, self._params.program_id)
            return None

        if not tx.succeeded:
            await self._persist(tx, None)
            logger.debug("Transaction %s failed on-chain, audit only", signature)
            return None

        usd_price = await self._price_cache.get_usd_price()
        return await self._persist(tx, usd_price)

    async def _persist(
        self, tx: MaterializedTransaction, usd_price: float | None
    ) -> ReconcileOutcome | None:
        """Write the audit row and reconcile, in one database transaction."""
        outcome: ReconcileOutcome | None = None
        try:
            async with self._db.get_async_session() as session:
                await TransactionRepository(session).insert_if_absent(
                    TransactionDTO(
                        signature=tx.signature,
                        slot=tx.slot,
                        block_time=tx.block_time or datetime.now(UTC),
                        signer=tx.signer or "",
                        success=tx.succeeded,
                        instruction_count=len(tx.instructions),
                    )
                )
                if usd_price is not None:
                    trade = parse_trade(tx, usd_price, params=self._params)
                    token = parse_token_creation(tx, params=self._params)
                    hints = (
                        extract_token_hints(tx, trade.token_mint, params=self._params)
                        if trade is not None
                        else None
                    )
                    outcome = await self._reconciler.apply(
                        SessionStateStore(session),
                        trade=trade,
                        token_creation=token,
                        usd_price=usd_price,
                        hints=hints,
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database error for {tx.signature}: {e}") from e
        return outcome

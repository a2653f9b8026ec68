"""Main pipeline orchestrator for the pump.fun indexer.

This module provides the Pipeline class that wires the log stream
ingester, the event bus and the pipeline worker together according to
the deployment mode.

Modes:
    ingest:      LogStreamIngester -> Redis channel
    worker:      Redis channel -> PipelineWorker -> database
    standalone:  LogStreamIngester -> in-memory bus -> PipelineWorker
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

import aiohttp
from redis.asyncio import Redis

from pumpfun_indexer.config import Settings, get_settings
from pumpfun_indexer.errors import IngesterFatalError
from pumpfun_indexer.ingestor.bus import EventBus, InMemoryEventBus, RedisEventBus
from pumpfun_indexer.ingestor.log_stream import LogStreamIngester
from pumpfun_indexer.ingestor.price import PriceOracleCache, PythPriceFeed
from pumpfun_indexer.ingestor.resolver import TransactionResolver
from pumpfun_indexer.reconciler import StateReconciler
from pumpfun_indexer.storage.database import DatabaseManager
from pumpfun_indexer.worker import PipelineWorker

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class PipelineMode(str, Enum):
    """Which halves of the pipeline run in this process."""

    INGEST = "ingest"
    WORKER = "worker"
    STANDALONE = "standalone"

    @property
    def runs_ingester(self) -> bool:
        return self in (PipelineMode.INGEST, PipelineMode.STANDALONE)

    @property
    def runs_worker(self) -> bool:
        return self in (PipelineMode.WORKER, PipelineMode.STANDALONE)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    errors: int = 0
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator.

    Example:
        ```python
        from pumpfun_indexer.config import get_settings
        from pumpfun_indexer.pipeline import Pipeline, PipelineMode

        pipeline = Pipeline(get_settings(), mode=PipelineMode.STANDALONE)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        mode: PipelineMode = PipelineMode.STANDALONE,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            mode: Which components run in this process.
        """
        self._settings = settings or get_settings()
        self._mode = mode

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()
        self._fatal_error: IngesterFatalError | None = None

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._bus: EventBus | None = None
        self._db_manager: DatabaseManager | None = None
        self._http_session: aiohttp.ClientSession | None = None
        self._resolver: TransactionResolver | None = None
        self._price_feed: PythPriceFeed | None = None
        self._price_cache: PriceOracleCache | None = None
        self._ingester: LogStreamIngester | None = None
        self._worker: PipelineWorker | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._ingester_task: asyncio.Task[None] | None = None
        self._worker_task: asyncio.Task[None] | None = None

    @property
    def mode(self) -> PipelineMode:
        return self._mode

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def ingester(self) -> LogStreamIngester | None:
        return self._ingester

    @property
    def worker(self) -> PipelineWorker | None:
        return self._worker

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        self._fatal_error = None
        logger.info("Starting pipeline in %s mode...", self._mode.value)

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        The ingester stops first, then the worker finishes its in-flight
        signatures, then connections are closed.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def _build_bus(self) -> EventBus:
        settings = self._settings.ingest
        if self._mode == PipelineMode.STANDALONE and settings.bus_mode == "memory":
            return InMemoryEventBus(capacity=settings.memory_bus_capacity)
        self._redis = Redis.from_url(self._settings.redis.url)
        return RedisEventBus(self._redis, channel=settings.channel)

    async def _initialize_components(self) -> None:
        """Initialize the components this mode needs."""
        settings = self._settings

        logger.debug("Initializing event bus...")
        self._bus = self._build_bus()

        if self._mode.runs_ingester:
            logger.debug("Initializing log stream ingester...")
            self._ingester = LogStreamIngester(
                url=settings.helius.ws_endpoint,
                program_id=settings.protocol.program_id,
                bus=self._bus,
                keepalive_interval=settings.ingest.keepalive_interval_seconds,
                initial_reconnect_delay=settings.ingest.reconnect_base_delay_seconds,
                max_reconnect_delay=settings.ingest.reconnect_max_delay_seconds,
                max_reconnect_attempts=settings.ingest.max_reconnect_attempts,
                publish_timeout=settings.ingest.publish_timeout_seconds,
            )

        if self._mode.runs_worker:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager.from_settings(settings.database)
            await self._db_manager.ping()

            self._http_session = aiohttp.ClientSession()

            logger.debug("Initializing transaction resolver...")
            self._resolver = TransactionResolver(
                settings.helius.rpc_endpoint,
                session=self._http_session,
                max_attempts=settings.resolver.max_attempts,
                rate_limit_backoff=settings.resolver.rate_limit_backoff_seconds,
                not_indexed_delay=settings.resolver.not_indexed_delay_seconds,
                timeout=settings.resolver.request_timeout_seconds,
            )

            logger.debug("Initializing price oracle...")
            self._price_feed = PythPriceFeed(
                url=settings.price.hermes_url,
                feed_id=settings.price.feed_id,
                session=self._http_session,
                timeout=settings.price.request_timeout_seconds,
            )
            self._price_cache = PriceOracleCache(
                self._price_feed,
                ttl_seconds=settings.price.cache_ttl_seconds,
            )

            params = settings.protocol.params()
            self._worker = PipelineWorker(
                bus=self._bus,
                resolver=self._resolver,
                price_cache=self._price_cache,
                db=self._db_manager,
                reconciler=StateReconciler(params),
                params=params,
                max_concurrency=settings.worker.max_concurrency,
            )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._worker:
            logger.debug("Starting pipeline worker...")
            self._worker_task = asyncio.create_task(self._run_worker())

        if self._ingester:
            logger.debug("Starting log stream...")
            self._ingester_task = asyncio.create_task(self._run_ingester())

    async def _run_ingester(self) -> None:
        """Run the log stream in a task; a fatal error stops the pipeline."""
        if not self._ingester:
            return

        try:
            await self._ingester.start()
        except asyncio.CancelledError:
            logger.debug("Log stream task cancelled")
        except IngesterFatalError as e:
            logger.error("Log stream failed permanently: %s", e)
            self._fatal_error = e
            self._stats.last_error = str(e)
            self._stats.errors += 1
            self._state = PipelineState.ERROR
            if self._stop_event:
                self._stop_event.set()

    async def _run_worker(self) -> None:
        """Run the worker in a task."""
        if not self._worker:
            return

        try:
            await self._worker.run()
        except asyncio.CancelledError:
            logger.debug("Worker task cancelled")
        except Exception as e:
            logger.error("Worker error: %s", e)
            self._stats.last_error = str(e)
            self._stats.errors += 1
            if self._stop_event:
                self._stop_event.set()

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._ingester:
            logger.debug("Stopping log stream...")
            await self._ingester.stop()

        if self._ingester_task:
            self._ingester_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ingester_task
            self._ingester_task = None

        if self._worker:
            logger.debug("Stopping worker, draining in-flight signatures...")
            await self._worker.stop()
        elif self._bus:
            await self._bus.close()

        if self._worker_task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker_task
            self._worker_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

        # Close database connections
        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        # Close Redis connection
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Raises:
            IngesterFatalError: If the log stream exhausted its reconnects.
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

        if self._fatal_error is not None:
            raise self._fatal_error

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

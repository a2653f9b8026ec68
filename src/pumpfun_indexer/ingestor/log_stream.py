"""Solana log-notification stream (logsSubscribe) feeding the event bus.

The ingester holds one WebSocket subscription scoped to the program of
interest and publishes a ``SignatureEnvelope`` for every successful
transaction it is notified about. It never fetches or parses transactions
so the read loop stays free of slow I/O.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from pumpfun_indexer.errors import DecodeError, IngesterFatalError, TransportError
from pumpfun_indexer.ingestor.bus import EventBus
from pumpfun_indexer.ingestor.models import SignatureEnvelope

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL = 30  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 30  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_PUBLISH_TIMEOUT = 2.0  # seconds

SUBSCRIBE_REQUEST_ID = 1


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIPTION_PENDING = "subscription_pending"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    notifications_received: int = 0
    envelopes_published: int = 0
    failed_transactions_skipped: int = 0
    publish_failures: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class StreamConnectionError(TransportError):
    """Raised when connecting to the WebSocket endpoint fails."""


class SubscriptionError(TransportError):
    """Raised when the endpoint rejects the logsSubscribe request."""


StateCallback = Callable[[ConnectionState], Awaitable[None]]


def _display_url(url: str) -> str:
    """Strip the query string, which carries the API key."""
    return url.split("?", 1)[0]


class LogStreamIngester:
    """WebSocket client for program log notifications.

    Example:
        ```python
        bus = InMemoryEventBus()
        ingester = LogStreamIngester(
            url="wss://mainnet.helius-rpc.com/?api-key=...",
            program_id=PUMP_FUN_PROGRAM_ID,
            bus=bus,
        )
        await ingester.start()  # runs until stop() or IngesterFatalError
        ```
    """

    def __init__(
        self,
        *,
        url: str,
        program_id: str,
        bus: EventBus,
        on_state_change: StateCallback | None = None,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        initial_reconnect_delay: float = DEFAULT_INITIAL_RECONNECT_DELAY,
        max_reconnect_delay: float = DEFAULT_MAX_RECONNECT_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT,
    ) -> None:
        self._url = url
        self._program_id = program_id
        self._bus = bus
        self._on_state_change = on_state_change
        self._keepalive_interval = keepalive_interval
        self._initial_reconnect_delay = initial_reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._publish_timeout = publish_timeout

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()
        self._attempt = 0
        self._subscription_id: int | None = None

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def subscription_id(self) -> int | None:
        return self._subscription_id

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Log stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff before reconnect ``attempt`` (1-based)."""
        return float(
            min(self._max_reconnect_delay, self._initial_reconnect_delay * 2 ** (attempt - 1))
        )

    def subscription_request(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": SUBSCRIBE_REQUEST_ID,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self._program_id]},
                {"commitment": "confirmed"},
            ],
        }

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            # Keepalive pings are sent by our own task.
            ws = await websockets.connect(self._url, ping_interval=None)
        except Exception as e:
            self._stats.last_error = str(e)
            raise StreamConnectionError(
                f"Failed to connect to {_display_url(self._url)}: {e}"
            ) from e

        await ws.send(json.dumps(self.subscription_request()))
        await self._set_state(ConnectionState.SUBSCRIPTION_PENDING)
        logger.info("Connected to %s, awaiting subscription", _display_url(self._url))
        return ws

    async def _keepalive(self, ws: ClientConnection) -> None:
        """Ping every interval; close the socket if a ping goes unanswered."""
        while True:
            await asyncio.sleep(self._keepalive_interval)
            try:
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=self._keepalive_interval)
            except (websockets.ConnectionClosed, TimeoutError, OSError) as e:
                logger.warning("Keepalive failed, dropping connection: %s", e)
                self._stats.last_error = f"keepalive: {e}"
                with contextlib.suppress(Exception):
                    await ws.close()
                return

    async def _publish(self, envelope: SignatureEnvelope) -> None:
        try:
            await asyncio.wait_for(self._bus.publish(envelope), timeout=self._publish_timeout)
        except TimeoutError:
            self._stats.publish_failures += 1
            logger.warning("Publish of %s timed out, dropping envelope", envelope.signature)
        except TransportError as e:
            self._stats.publish_failures += 1
            logger.warning("Publish of %s failed, dropping envelope: %s", envelope.signature, e)
        else:
            self._stats.envelopes_published += 1

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON message on log stream")
            return
        if not isinstance(data, dict):
            logger.debug("Ignoring non-object log stream message")
            return

        if "params" in data:
            try:
                envelope = SignatureEnvelope.from_notification(data)
            except DecodeError as e:
                logger.warning("Failed to parse log notification: %s", e)
                return
            self._stats.notifications_received += 1
            self._stats.last_message_time = time.time()
            if envelope.failed:
                self._stats.failed_transactions_skipped += 1
                logger.debug("Skipping failed transaction %s", envelope.signature)
                return
            await self._publish(envelope)
            return

        if data.get("error") is not None:
            raise SubscriptionError(f"logsSubscribe rejected: {data['error']}")

        if data.get("id") == SUBSCRIBE_REQUEST_ID and "result" in data:
            self._subscription_id = data["result"]
            self._attempt = 0
            self._stats.connected_since = time.time()
            await self._set_state(ConnectionState.STREAMING)
            logger.info("Subscribed to logs of %s (id=%s)", self._program_id, data["result"])
            return

        logger.debug("Ignoring log stream message: %r", data)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                message = await ws.recv()
                if isinstance(message, str):
                    await self._handle_message(message)
                else:
                    logger.debug("Ignoring non-text log stream message")
        except websockets.ConnectionClosed as e:
            if self._running:
                logger.warning("Log stream connection closed: %s", e)
                raise

    async def _wait_before_reconnect(self, delay: float) -> None:
        if self._stop_event is None:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

    async def start(self) -> None:
        """Run the connect/subscribe/stream loop until stopped.

        Raises:
            IngesterFatalError: If ``max_reconnect_attempts`` consecutive
                connections fail without reaching a confirmed subscription.
        """
        if self._running:
            raise RuntimeError("Log stream already running")
        self._running = True
        self._stop_event = asyncio.Event()
        self._attempt = 0

        try:
            while self._running and not self._stop_event.is_set():
                keepalive: asyncio.Task[None] | None = None
                try:
                    self._ws = await self._connect()
                    keepalive = asyncio.create_task(self._keepalive(self._ws))
                    await self._listen(self._ws)
                except Exception as e:
                    if not self._running:
                        break
                    self._stats.last_error = str(e)
                    self._attempt += 1
                    if self._attempt > self._max_reconnect_attempts:
                        logger.error(
                            "Log stream giving up after %d failed attempts: %s",
                            self._max_reconnect_attempts,
                            e,
                        )
                        raise IngesterFatalError(
                            f"Reconnect limit of {self._max_reconnect_attempts} exceeded: {e}"
                        ) from e
                    self._stats.reconnect_count += 1
                    delay = self.reconnect_delay(self._attempt)
                    await self._set_state(ConnectionState.RECONNECTING)
                    logger.warning(
                        "Log stream failure (%s), reconnect %d/%d in %.1fs",
                        e,
                        self._attempt,
                        self._max_reconnect_attempts,
                        delay,
                    )
                    await self._wait_before_reconnect(delay)
                finally:
                    if keepalive is not None:
                        keepalive.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await keepalive
                    with contextlib.suppress(Exception):
                        if self._ws:
                            await self._ws.close()
                    self._ws = None
        finally:
            self._running = False
            self._subscription_id = None
            await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()

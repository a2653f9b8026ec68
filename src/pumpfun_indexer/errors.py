"""Exception hierarchy shared across the indexer.

Per-signature errors (everything except ``IngesterFatalError``) are caught
by the worker, logged and counted; they never stop the pipeline.
"""

from __future__ import annotations

from typing import Any


class IndexerError(Exception):
    """Base exception for indexer errors."""


class TransportError(IndexerError):
    """Raised on socket/HTTP failures talking to an external service."""


class RateLimited(TransportError):
    """Raised when an upstream answers HTTP 429."""


class NotIndexedYet(IndexerError):
    """Raised when the RPC provider has not indexed a transaction yet."""


class NotFoundAfterRetries(IndexerError):
    """Raised when a signature could not be resolved within the attempt budget."""

    def __init__(self, signature: str, attempts: int, last_error: Exception | None = None) -> None:
        super().__init__(f"Transaction {signature} not found after {attempts} attempts")
        self.signature = signature
        self.attempts = attempts
        self.last_error = last_error


class RpcError(IndexerError):
    """Raised when the RPC endpoint reports a hard error. Not retried."""

    def __init__(self, message: str, error: Any = None) -> None:
        super().__init__(message)
        self.error = error


class DecodeError(IndexerError):
    """Raised when an external payload does not have the expected shape."""


class QuoteUnavailable(IndexerError):
    """Raised when the price feed cannot produce a quote."""


class PersistenceError(IndexerError):
    """Raised when the backing store fails while reconciling a signature."""


class IngesterFatalError(IndexerError):
    """Raised when the log stream exhausted its reconnect attempts."""

"""Data ingestion layer - log streaming, event bus, resolution and pricing."""

from pumpfun_indexer.ingestor.bus import EventBus, InMemoryEventBus, RedisEventBus
from pumpfun_indexer.ingestor.log_stream import (
    ConnectionState,
    LogStreamIngester,
    StreamStats,
)
from pumpfun_indexer.ingestor.models import (
    AccountKey,
    Instruction,
    MaterializedTransaction,
    SignatureEnvelope,
    TokenBalance,
    TransactionMeta,
)
from pumpfun_indexer.ingestor.price import (
    PriceOracleCache,
    PriceQuote,
    PythPriceFeed,
    QuoteCell,
)
from pumpfun_indexer.ingestor.resolver import TransactionResolver

__all__ = [
    "AccountKey",
    "ConnectionState",
    "EventBus",
    "InMemoryEventBus",
    "Instruction",
    "LogStreamIngester",
    "MaterializedTransaction",
    "PriceOracleCache",
    "PriceQuote",
    "PythPriceFeed",
    "QuoteCell",
    "RedisEventBus",
    "SignatureEnvelope",
    "StreamStats",
    "TokenBalance",
    "TransactionMeta",
    "TransactionResolver",
]

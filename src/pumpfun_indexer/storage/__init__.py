"""Storage layer - Database schemas and repositories."""

from pumpfun_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
    to_async_url,
)
from pumpfun_indexer.storage.models import (
    Base,
    TokenHolderModel,
    TokenModel,
    TradeModel,
    TransactionModel,
)
from pumpfun_indexer.storage.repos import (
    SessionStateStore,
    TokenDTO,
    TokenHolderDTO,
    TokenHolderRepository,
    TokenRepository,
    TradeDTO,
    TradeRepository,
    TransactionDTO,
    TransactionRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "SessionStateStore",
    "TokenDTO",
    "TokenHolderDTO",
    "TokenHolderModel",
    "TokenHolderRepository",
    "TokenModel",
    "TokenRepository",
    "TradeDTO",
    "TradeModel",
    "TradeRepository",
    "TransactionDTO",
    "TransactionModel",
    "TransactionRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "to_async_url",
]

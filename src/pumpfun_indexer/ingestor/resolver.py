"""Transaction resolver: signature -> materialized transaction over JSON-RPC.

Handles the two ways a freshly streamed signature is usually unavailable:
the provider rate-limits us (HTTP 429) or has not indexed the transaction
yet (``{"result": null}``). Both are retried within a bounded number of
attempts; an RPC-reported error is surfaced immediately.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from pumpfun_indexer.errors import (
    DecodeError,
    NotFoundAfterRetries,
    NotIndexedYet,
    RateLimited,
    RpcError,
    TransportError,
)
from pumpfun_indexer.ingestor.models import MaterializedTransaction

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RATE_LIMIT_BACKOFF = 1.0  # seconds, doubled per attempt
DEFAULT_NOT_INDEXED_DELAY = 0.5  # seconds, multiplied by attempt
DEFAULT_TIMEOUT = 10.0  # seconds


class TransactionResolver:
    """Resolve signatures with ``getTransaction``.

    Example:
        ```python
        async with TransactionResolver("https://mainnet.helius-rpc.com/?api-key=...") as r:
            tx = await r.resolve("5xyz...")
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rate_limit_backoff: float = DEFAULT_RATE_LIMIT_BACKOFF,
        not_indexed_delay: float = DEFAULT_NOT_INDEXED_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._rpc_url = rpc_url
        self._session = session
        self._owns_session = session is None
        self._max_attempts = max_attempts
        self._rate_limit_backoff = rate_limit_backoff
        self._not_indexed_delay = not_indexed_delay
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._request_id = 0

    async def __aenter__(self) -> TransactionResolver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _rate_limit_delay(self, attempt: int) -> float:
        return float(self._rate_limit_backoff * 2 ** (attempt - 1))

    def _not_indexed_delay_for(self, attempt: int) -> float:
        return self._not_indexed_delay * attempt

    async def _call(self, signature: str) -> dict[str, Any]:
        """Issue one getTransaction call and return the decoded result."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "getTransaction",
            "params": [
                signature,
                {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0},
            ],
        }
        session = await self._ensure_session()
        try:
            async with session.post(self._rpc_url, json=payload, timeout=self._timeout) as resp:
                if resp.status == 429:
                    raise RateLimited(f"Rate limited resolving {signature}")
                if resp.status >= 500:
                    raise TransportError(f"HTTP {resp.status} resolving {signature}")
                if resp.status >= 400:
                    raise RpcError(f"HTTP {resp.status} resolving {signature}: {await resp.text()}")
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise TransportError(f"Request failed resolving {signature}: {e}") from e
        except ValueError as e:
            raise DecodeError(f"Invalid JSON resolving {signature}: {e}") from e

        if not isinstance(body, dict):
            raise DecodeError(f"Unexpected RPC response for {signature}")
        if body.get("error") is not None:
            raise RpcError(f"RPC error resolving {signature}: {body['error']}", body["error"])
        result = body.get("result")
        if result is None:
            raise NotIndexedYet(signature)
        if not isinstance(result, dict):
            raise DecodeError(f"Unexpected getTransaction result for {signature}")
        return result

    async def resolve(self, signature: str) -> MaterializedTransaction:
        """Resolve a signature to a MaterializedTransaction.

        Raises:
            NotFoundAfterRetries: If every attempt was rate limited, not yet
                indexed or failed in transport.
            RpcError: If the RPC endpoint reported an error.
            DecodeError: If the transaction payload is malformed.
        """
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = await self._call(signature)
            except NotIndexedYet as e:
                last_error = e
                delay = self._not_indexed_delay_for(attempt)
                logger.debug(
                    "Transaction %s not indexed yet (attempt %d/%d), retrying in %.2fs",
                    signature,
                    attempt,
                    self._max_attempts,
                    delay,
                )
            except TransportError as e:
                last_error = e
                delay = self._rate_limit_delay(attempt)
                logger.warning(
                    "%s (attempt %d/%d), retrying in %.2fs",
                    e,
                    attempt,
                    self._max_attempts,
                    delay,
                )
            else:
                return MaterializedTransaction.from_rpc_result(result)

            if attempt < self._max_attempts:
                await asyncio.sleep(delay)

        raise NotFoundAfterRetries(signature, self._max_attempts, last_error)

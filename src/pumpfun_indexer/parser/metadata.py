"""Token metadata scraping from program log lines.

pump.fun sometimes logs ``name: ..., symbol: ..., uri: ...`` while creating
a token. Matching is case-insensitive and a value ends at the first comma,
quote, brace or whitespace. Anything implausible is dropped silently.
"""

import re
from collections.abc import Iterable

from pumpfun_indexer.parser.models import TokenMetadata

MAX_NAME_LENGTH = 100
MAX_SYMBOL_LENGTH = 20
URI_PREFIXES = ("http", "ipfs", "ar://")

_VALUE = r"\s*([^,\"'{}\s]+)"
_NAME_RE = re.compile(r"\bname:" + _VALUE, re.IGNORECASE)
_SYMBOL_RE = re.compile(r"\bsymbol:" + _VALUE, re.IGNORECASE)
_URI_RE = re.compile(r"\b(?:uri|metadata):" + _VALUE, re.IGNORECASE)


def _first_match(pattern: re.Pattern[str], lines: Iterable[str]) -> str | None:
    for line in lines:
        match = pattern.search(line)
        if match:
            return match.group(1)
    return None


def extract_metadata_from_logs(lines: Iterable[str] | None) -> TokenMetadata:
    """Extract name, symbol and uri from log lines.

    The first occurrence of each key across all lines wins.
    """
    if not lines:
        return TokenMetadata()
    lines = list(lines)

    name = _first_match(_NAME_RE, lines)
    if name is not None and len(name) > MAX_NAME_LENGTH:
        name = None

    symbol = _first_match(_SYMBOL_RE, lines)
    if symbol is not None and len(symbol) > MAX_SYMBOL_LENGTH:
        symbol = None

    uri = _first_match(_URI_RE, lines)
    if uri is not None and not uri.lower().startswith(URI_PREFIXES):
        uri = None

    return TokenMetadata(name=name, symbol=symbol, uri=uri)

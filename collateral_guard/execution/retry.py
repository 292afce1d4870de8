"""Classification of ledger errors into transient and permanent."""
from __future__ import annotations

import asyncio

import aiohttp

from ..errors import LedgerRpcError

# Matched against the lowercased error message. Permanent patterns win.
PERMANENT_PATTERNS: tuple[str, ...] = (
    "execution reverted",
    "reverted",
    "insufficient funds",
    "insufficient balance",
    "invalid",
    "not found",
    "nonce too low",
    "already known",
)

RETRYABLE_PATTERNS: tuple[str, ...] = (
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "etimedout",
    "connection refused",
    "connection reset",
    "rate limit",
    "too many requests",
    "429",
    "service unavailable",
    "503",
    "gateway timeout",
    "504",
)

# JSON-RPC "limit exceeded"
_RETRYABLE_RPC_CODES = frozenset({-32005})

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    aiohttp.ClientConnectionError,
)


def is_retryable(error: BaseException) -> bool:
    """Return True when ``error`` looks transient and resubmission is safe."""
    message = str(error).lower()

    if any(pattern in message for pattern in PERMANENT_PATTERNS):
        return False
    if isinstance(error, LedgerRpcError) and error.code in _RETRYABLE_RPC_CODES:
        return True
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    if isinstance(error, aiohttp.ClientResponseError) and error.status in (429, 502, 503, 504):
        return True
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def is_hash_not_found(error: BaseException) -> bool:
    """Ledger has not seen the transaction yet."""
    message = str(error).lower()
    return "transaction hash not found" in message or "unknown transaction" in message

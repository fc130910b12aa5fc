"""
Exception taxonomy for the I/O-adjacent parts of CallPulse.

Normalization and metric computation never raise; their failures are data
(warnings, zeroed metrics, quality counters). Only the upstream fetch path
and the durable cache tier have raising failure modes, and those are caught
at the SyncOrchestrator boundary and recorded as status fields.

Exceptions:
- CallPulseError: base class for everything below
- UpstreamUnavailable: connectivity check failed before any row was fetched
- FetchTimeout: an awaited upstream or durable-store call exceeded its budget
- CacheCorruption: a durable envelope failed to parse or its version check
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CallPulseError(Exception):
    """Base class for CallPulse runtime errors."""


class UpstreamUnavailable(CallPulseError):
    """Raised when the upstream source cannot be reached."""

    def __init__(self, message: str = "Upstream source is unavailable", source_id: Optional[str] = None):
        super().__init__(message)
        self.source_id = source_id


class FetchTimeout(CallPulseError):
    """Raised when an awaited fetch does not settle within its timeout."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class CacheCorruption(CallPulseError):
    """Raised while decoding a durable cache envelope that cannot be trusted."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupt cache entry '{key}': {reason}")
        self.key = key
        self.reason = reason


async def with_timeout(awaitable: Awaitable[T], timeout: Optional[float], operation: str) -> T:
    """
    Await `awaitable`, converting an expired deadline into FetchTimeout.

    Args:
        awaitable: Coroutine or future to await.
        timeout: Seconds to wait; None waits indefinitely.
        operation: Human-readable label used in the error message.

    Returns:
        The awaited result.

    Raises:
        FetchTimeout: If the deadline passes first.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{operation} exceeded {timeout}s timeout")
        raise FetchTimeout(operation, timeout or 0.0) from e

"""
Deadline helper for blocking remote calls.

Every call to a partner or tenant API goes through call_with_timeout, so a
hung sign-in or a stalled Exchange session fails instead of blocking the run.
Retries of throttled or dropped HTTP requests live in api.client.ApiClient.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from .errors import OperationTimeout

T = TypeVar("T")


async def call_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    what: str,
) -> T:
    """Await operation() once, raising OperationTimeout after `timeout` seconds."""
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError:
        raise OperationTimeout(what, timeout) from None

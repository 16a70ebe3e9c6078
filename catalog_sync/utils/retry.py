"""Retry helpers for upstream HTTP calls."""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable

import httpx

RETRY_EXCEPTIONS = (httpx.TransportError, asyncio.TimeoutError)
RETRY_STATUS = {429, 502, 503, 504}


def retry_async(func: Callable[..., Awaitable], *, attempts: int = 3, base_delay: float = 1.0):
    """Retry transport failures and transient status codes with jittered backoff."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                result = await func(*args, **kwargs)
            except RETRY_EXCEPTIONS:
                if last:
                    raise
            else:
                if not isinstance(result, httpx.Response) or result.status_code not in RETRY_STATUS or last:
                    return result
            await asyncio.sleep(delay + random.random() * base_delay)
            delay *= 2

    return wrapper

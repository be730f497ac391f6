"""Retry helpers for calls to Shopify."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable

from catalog_sync.errors import TransientError

logger = logging.getLogger(__name__)

RETRY_EXCEPTIONS = (TransientError,)


def retry_async(func: Callable[..., Awaitable], *, attempts: int = 3, base_delay: float = 1.0):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS as exc:
                if attempt == attempts - 1:
                    raise
                logger.warning("Transient failure (attempt %s/%s): %s", attempt + 1, attempts, exc)
                if delay > 0:
                    await asyncio.sleep(delay + random.random() * delay)
                delay *= 2
    return wrapper

"""Bounded retry for operations that hit a temporarily unavailable store."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, TypeVar

from fastapi.concurrency import run_in_threadpool

from .errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_transient(operation: Callable[[], T], *, attempts: int, backoff_seconds: float) -> T:
    """Run ``operation`` in the threadpool, retrying TransientStoreError with linear backoff.

    The last TransientStoreError is re-raised once ``attempts`` are used up.
    Every other exception propagates on the first occurrence.
    """
    attempt = 1
    while True:
        try:
            return await run_in_threadpool(operation)
        except TransientStoreError:
            if attempt >= attempts:
                raise
            delay = backoff_seconds * attempt
            logger.warning("Transient store error on attempt %d/%d, retrying in %.2fs", attempt, attempts, delay)
            attempt += 1
            await asyncio.sleep(delay)

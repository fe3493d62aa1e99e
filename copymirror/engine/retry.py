"""
Retry Policy
============
Explicit retry with exponential backoff around a suspension point.
The default policy makes a single attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """`retries` extra attempts, sleeping backoff_ms * 2**n between them."""
    retries: int = 0
    backoff_ms: int = 500

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= self.retries:
                    raise
                delay = self.backoff_ms * (2 ** attempt) / 1000
                attempt += 1
                logger.warning(f"🔁 {label} failed ({e}), retry {attempt}/{self.retries} in {delay:.1f}s")
                await asyncio.sleep(delay)

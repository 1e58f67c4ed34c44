"""
Helper for side effects that must never fail the operation that triggered them
(notifications, account-status reconciliation, per-item batch work).
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from gavel.util.logger import get_logger

logger = get_logger("best_effort")

T = TypeVar("T")


async def run_best_effort(label: str, awaitable: Awaitable[T]) -> Optional[T]:
    """Await ``awaitable`` and return its result, or log and return None on failure.

    Cancellation is not swallowed.
    """
    try:
        return await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("[BEST EFFORT] %s failed: %s", label, exc, exc_info=True)
        return None

"""Retry helper for optimistic-version conflicts.

Only ``ConflictError`` is retried: a conflicting conditional write never
touched the record, so re-reading and re-applying is safe. Anything else
(including ``StorageUnavailable``) propagates on the first failure, because a
retry after a partial write could duplicate side effects.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from libs.common.logging import get_logger
from libs.db.errors import ConflictError

logger = get_logger(__name__)

T = TypeVar("T")


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_base: float = 0.01,
) -> T:
    """
    Run a read-modify-write coroutine, retrying when its conditional write
    loses a race.
    """
    for attempt in range(attempts):
        try:
            return await func()
        except ConflictError as exc:
            if attempt >= attempts - 1:
                raise
            logger.info(
                "Version conflict on %s %s (attempt %d/%d), retrying",
                exc.collection,
                exc.record_id,
                attempt + 1,
                attempts,
            )
            await asyncio.sleep(backoff_base * (2**attempt))
    raise RuntimeError("run_with_retry called with attempts < 1")

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession
from .config import settings
from .errors import StoreConflict

log = logging.getLogger("store.retry")

T = TypeVar("T")

async def retry_on_conflict(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    attempts: int | None = None,
    base_delay: float | None = None,
) -> T:
    """Run ``work`` and re-run it from scratch when a compare-and-set loses.

    ``work`` must re-read whatever it decides on; the session is rolled back
    between attempts so stale identity-map state is discarded.
    """
    attempts = attempts or settings.STORE_CONFLICT_RETRIES
    delay = settings.STORE_CONFLICT_BACKOFF_SECONDS if base_delay is None else base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await work()
        except (StoreConflict, StaleDataError) as e:
            await session.rollback()
            if attempt == attempts:
                raise StoreConflict() from e
            log.debug("Store conflict (attempt %s/%s), retrying", attempt, attempts)
            await asyncio.sleep(delay * (2 ** (attempt - 1)))
    raise StoreConflict()

def is_unique_violation(e: IntegrityError) -> bool:
    text = str(e.orig).lower() if e.orig is not None else str(e).lower()
    return "unique" in text or "duplicate" in text

"""Keyword save buffer.

Collects per-article extraction results and writes them to storage in
batches. A flush is triggered when the buffer reaches ``batch_size``, by a
periodic timer, and once more on shutdown. Only one flush runs at a time;
a trigger that arrives while a flush is in flight does nothing and the
next flush picks up whatever accumulated meanwhile.

Failed batches go back to the front of the buffer. Nothing is dropped, so
the buffer grows without bound while storage stays unavailable.
"""

import asyncio
import contextlib
from datetime import datetime
from typing import Callable, List, Optional

from newstrend.core.logging import get_logger
from newstrend.core.repositories import KeywordRepository, PendingKeywordSave
from newstrend.core.time import calculate_bucket_time, get_current_utc_time

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_FLUSH_INTERVAL = 30.0
DEFAULT_BUCKET_MINUTES = 5


class KeywordSaveBuffer:
    """Owned accumulator in front of ``KeywordRepository.save_keywords_batch``."""

    def __init__(
        self,
        repository: KeywordRepository,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
        clock: Callable[[], datetime] = get_current_utc_time,
    ):
        if bucket_minutes <= 0:
            raise ValueError("bucket_minutes must be positive")

        self.repository = repository
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.bucket_minutes = bucket_minutes
        self.clock = clock

        self._pending: List[PendingKeywordSave] = []
        self._flushing = False
        self._timer: Optional[asyncio.Task] = None
        self._timer_flushing = False
        self._stopping = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    async def enqueue(self, item: PendingKeywordSave) -> None:
        """Add one article's keywords; flush when the batch is full."""
        self._pending.append(item)
        if len(self._pending) >= self.batch_size:
            await self.flush()

    async def flush(self) -> int:
        """
        Write everything pending as one batch.

        Returns:
            Number of articles written, 0 if skipped or failed
        """
        if self._flushing or not self._pending:
            return 0

        # Flag is set before the first await so overlapping triggers bail out
        self._flushing = True
        batch: List[PendingKeywordSave] = []
        try:
            bucket_time = calculate_bucket_time(self.clock(), self.bucket_minutes)
            batch, self._pending = self._pending, []
            await self.repository.save_keywords_batch(batch, bucket_time)
        except asyncio.CancelledError:
            self._pending = batch + self._pending
            raise
        except Exception as e:
            self._pending = batch + self._pending
            logger.error(
                f"Keyword flush failed, {len(self._pending)} articles kept in buffer: {e}",
                extra={'batch_size': len(batch), 'pending': len(self._pending)},
                exc_info=True
            )
            return 0
        finally:
            self._flushing = False

        logger.debug(
            f"Flushed {len(batch)} articles",
            extra={'batch_size': len(batch), 'bucket_time': bucket_time.isoformat()}
        )
        return len(batch)

    def start(self) -> None:
        """Start the periodic flush timer."""
        if self._timer is None or self._timer.done():
            self._stopping = False
            self._timer = asyncio.create_task(self._run_timer(), name="keyword-flush-timer")
            logger.info(f"Keyword flush timer started (every {self.flush_interval}s)")

    async def stop(self) -> None:
        """
        Stop the timer, then flush what is left.

        A timer flush already writing is awaited rather than cancelled.
        """
        self._stopping = True
        if self._timer is not None:
            if not self._timer_flushing:
                self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None

        await self.flush()
        if self._pending:
            logger.warning(
                f"Shutdown flush left {len(self._pending)} articles unsaved",
                extra={'pending': len(self._pending)}
            )

    async def _run_timer(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self.flush_interval)
            self._timer_flushing = True
            try:
                await self.flush()
            finally:
                self._timer_flushing = False

"""Article queue worker.

A fixed pool of consumer slots pulls article jobs from the queue, runs
keyword extraction inline and hands the result to the save buffer. Jobs
finish in whatever order their slots do.

A job that raises is reported to the queue as failed; retrying it is the
queue's business.
"""

import asyncio
import signal
from typing import List, Optional

from newstrend.core.db import AsyncSessionLocal, dispose
from newstrend.core.logging import get_logger, setup_logging
from newstrend.core.queue import ArticleJob, ArticleQueue, RedisArticleQueue
from newstrend.core.repositories import KeywordRepository, PendingKeywordSave
from newstrend.core.settings import get_settings
from newstrend.trender.buffer import KeywordSaveBuffer
from newstrend.trender.extractor import TrendAnalysis, analyze_article, build_keyword_scores

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 5
FETCH_TIMEOUT_SECONDS = 1.0


class TrendWorker:
    """Bounded-concurrency consumer feeding a KeywordSaveBuffer."""

    def __init__(
        self,
        queue: ArticleQueue,
        buffer: KeywordSaveBuffer,
        concurrency: int = DEFAULT_CONCURRENCY,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
    ):
        self.queue = queue
        self.buffer = buffer
        self.concurrency = concurrency
        self.fetch_timeout = fetch_timeout
        self._slots: List[asyncio.Task] = []
        self._accepting = False
        self.stats = {'completed': 0, 'failed': 0, 'skipped': 0}

    @property
    def running(self) -> bool:
        return self._accepting

    async def process_job(self, job: ArticleJob) -> Optional[TrendAnalysis]:
        """
        Extract keywords for one article and forward them to the buffer.

        Articles without an id or with fewer than two keywords are analysed
        but not persisted.
        """
        article = job.message
        analysis = analyze_article(article.title, article.content_body)

        if article.article_id is None or len(analysis.keywords) < 2:
            self.stats['skipped'] += 1
            logger.debug(
                f"Not persisting job {job.id}",
                extra={'article_id': article.article_id, 'keywords': analysis.keywords}
            )
            return analysis

        await self.buffer.enqueue(PendingKeywordSave(
            article_id=article.article_id,
            keywords=build_keyword_scores(analysis),
        ))
        logger.info(
            f"Analyzed article: {article.title[:50]}",
            extra={
                'job_id': job.id,
                'article_id': article.article_id,
                'composite_key': analysis.composite_key,
                'score': analysis.score,
            }
        )
        return analysis

    async def handle(self, job: ArticleJob) -> None:
        """Run one job and settle it on the queue."""
        try:
            await self.process_job(job)
        except Exception as e:
            self.stats['failed'] += 1
            logger.error(f"Job failed: {job.id}: {e}", extra={'job_id': job.id}, exc_info=True)
            await self.queue.fail(job, e)
            return

        self.stats['completed'] += 1
        await self.queue.complete(job)

    async def _slot(self, index: int) -> None:
        while self._accepting:
            try:
                job = await self.queue.fetch(timeout=self.fetch_timeout)
                if job is not None:
                    await self.handle(job)
            except Exception as e:
                # Queue connection trouble; keep the slot alive
                logger.error(f"Slot {index} queue error: {e}", exc_info=True)
                await asyncio.sleep(self.fetch_timeout)

    def start(self) -> None:
        """Launch the consumer slots and the buffer's flush timer."""
        if self._accepting:
            return
        self._accepting = True
        self._slots = [
            asyncio.create_task(self._slot(i), name=f"trend-worker-{i}")
            for i in range(self.concurrency)
        ]
        self.buffer.start()
        logger.info(f"Trend worker started with {self.concurrency} slots")

    async def stop(self) -> None:
        """
        Shut down in order: stop taking jobs, stop the flush timer, flush
        the buffer, close the queue client.
        """
        self._accepting = False
        # Slots exit after their current job; a slot blocked on fetch
        # returns within fetch_timeout.
        if self._slots:
            await asyncio.gather(*self._slots, return_exceptions=True)
            self._slots = []

        await self.buffer.stop()
        await self.queue.close()
        logger.info("Trend worker stopped", extra=self.stats)


def build_worker() -> TrendWorker:
    """Wire a worker from settings."""
    settings = get_settings()
    repository = KeywordRepository(AsyncSessionLocal)
    buffer = KeywordSaveBuffer(
        repository,
        batch_size=settings.batch_size,
        flush_interval=settings.flush_interval_seconds,
        bucket_minutes=settings.bucket_minutes,
    )
    queue = RedisArticleQueue(settings.redis_url, name=settings.queue_name)
    return TrendWorker(queue, buffer, concurrency=settings.worker_concurrency)


async def run_worker() -> None:
    """Run the worker until SIGINT/SIGTERM, then shut down cleanly."""
    worker = build_worker()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    worker.start()
    try:
        await stop_event.wait()
    finally:
        await worker.stop()
        await dispose()


if __name__ == "__main__":
    setup_logging("trend-worker")
    asyncio.run(run_worker())

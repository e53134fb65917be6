"""Tests for the article queue worker."""

import asyncio
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from newstrend.core.models import KeywordType
from newstrend.core.queue import ArticleJob, ArticleMessage
from newstrend.trender.buffer import KeywordSaveBuffer
from newstrend.trender.worker import TrendWorker


def make_job(article_id: Optional[int] = 42, title: str = "삼성전자 반도체 수출 증가") -> ArticleJob:
    message = ArticleMessage(
        title=title,
        contentBody="삼성전자는 올해 반도체 생산을 늘렸다. 반도체 업황 개선으로 반도체 수요가 늘었다",
        link=f"https://news.example.com/{article_id}",
        press="연합뉴스",
        articleId=article_id,
    )
    return ArticleJob(id=str(article_id), message=message, raw=message.model_dump_json(by_alias=True))


class FakeQueue:
    """In-memory stand-in for RedisArticleQueue."""

    def __init__(self):
        self.jobs: asyncio.Queue = asyncio.Queue()
        self.completed = []
        self.failed = []
        self.closed = False

    async def fetch(self, timeout: float = 1.0) -> Optional[ArticleJob]:
        try:
            return await asyncio.wait_for(self.jobs.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def complete(self, job: ArticleJob) -> None:
        self.completed.append(job.id)

    async def fail(self, job: ArticleJob, error: BaseException) -> None:
        self.failed.append((job.id, error))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def buffer():
    buf = MagicMock()
    buf.enqueue = AsyncMock()
    buf.stop = AsyncMock()
    return buf


class TestProcessJob:
    """Tests for per-article processing."""

    @pytest.mark.asyncio
    async def test_enqueues_scored_keywords(self, queue, buffer):
        worker = TrendWorker(queue, buffer)

        analysis = await worker.process_job(make_job(42))

        assert analysis.composite_key == "반도체:삼성전자"
        pending = buffer.enqueue.await_args.args[0]
        assert pending.article_id == 42
        assert [(k.keyword, k.score, k.type) for k in pending.keywords] == [
            ("반도체", 14, KeywordType.SINGLE),
            ("삼성전자", 13, KeywordType.SINGLE),
            ("반도체:삼성전자", 19, KeywordType.COMPOSITE),
        ]

    @pytest.mark.asyncio
    async def test_skips_article_without_id(self, queue, buffer):
        worker = TrendWorker(queue, buffer)

        await worker.process_job(make_job(None))

        buffer.enqueue.assert_not_awaited()
        assert worker.stats['skipped'] == 1

    @pytest.mark.asyncio
    async def test_skips_article_with_single_keyword(self, queue, buffer):
        worker = TrendWorker(queue, buffer)

        analysis = await worker.process_job(make_job(7, title="반도체"))

        assert analysis.keywords == ["반도체"]
        buffer.enqueue.assert_not_awaited()


class TestHandle:
    """Tests for settling jobs on the queue."""

    @pytest.mark.asyncio
    async def test_success_completes_job(self, queue, buffer):
        worker = TrendWorker(queue, buffer)

        await worker.handle(make_job(1))

        assert queue.completed == ["1"]
        assert queue.failed == []
        assert worker.stats['completed'] == 1

    @pytest.mark.asyncio
    async def test_error_fails_job(self, queue, buffer):
        buffer.enqueue = AsyncMock(side_effect=RuntimeError("buffer exploded"))
        worker = TrendWorker(queue, buffer)

        await worker.handle(make_job(1))

        assert queue.completed == []
        job_id, error = queue.failed[0]
        assert job_id == "1"
        assert str(error) == "buffer exploded"
        assert worker.stats['failed'] == 1


class TestLifecycle:
    """Tests for the slot pool and the shutdown sequence."""

    @pytest.mark.asyncio
    async def test_processes_jobs_then_flushes_on_stop(self, queue):
        repository = MagicMock()
        repository.save_keywords_batch = AsyncMock(return_value={})
        buffer = KeywordSaveBuffer(repository, batch_size=50, flush_interval=60.0)
        worker = TrendWorker(queue, buffer, concurrency=3, fetch_timeout=0.05)

        worker.start()
        for article_id in (1, 2, 3):
            await queue.jobs.put(make_job(article_id))

        for _ in range(100):
            if len(queue.completed) == 3:
                break
            await asyncio.sleep(0.01)

        await worker.stop()

        assert sorted(queue.completed) == ["1", "2", "3"]
        repository.save_keywords_batch.assert_awaited_once()
        batch = repository.save_keywords_batch.await_args.args[0]
        assert sorted(item.article_id for item in batch) == [1, 2, 3]
        assert queue.closed
        assert not worker.running

    @pytest.mark.asyncio
    async def test_slot_survives_queue_errors(self, queue, buffer):
        calls = {'n': 0}
        real_fetch = queue.fetch

        async def flaky_fetch(timeout: float = 1.0):
            calls['n'] += 1
            if calls['n'] == 1:
                raise ConnectionError("redis went away")
            return await real_fetch(timeout)

        queue.fetch = flaky_fetch
        worker = TrendWorker(queue, buffer, concurrency=1, fetch_timeout=0.01)

        worker.start()
        await queue.jobs.put(make_job(5))
        for _ in range(100):
            if queue.completed:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert queue.completed == ["5"]
        buffer.stop.assert_awaited_once()

"""Article work queue client.

Jobs are JSON payloads on a Redis list. A consumer atomically moves a
payload from the waiting list to the active list, so a crashed worker
leaves its in-flight jobs visible for recovery. Completed jobs are removed
from the active list; failed ones are moved to the failed list together
with the error. Retry and backoff policy belong to whoever operates the
queue.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from newstrend.core.logging import get_logger
from newstrend.core.time import get_current_utc_time

logger = get_logger(__name__)


class QueueError(Exception):
    """Raised when a queue payload cannot be decoded into an article job."""


class ArticleMessage(BaseModel):
    """One scraped article as published by the collector."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = ""
    content_body: str = Field(default="", alias="contentBody")
    link: str = ""
    press: Optional[str] = None
    article_id: Optional[int] = Field(default=None, alias="articleId")


@dataclass
class ArticleJob:
    """A dequeued message plus the raw payload needed to ack it."""
    id: str
    message: ArticleMessage
    raw: str


def decode_job(raw: str) -> ArticleJob:
    """Decode a raw queue payload into an ArticleJob."""
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise QueueError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise QueueError("Payload must be a JSON object")

    data = envelope.get("data", envelope)
    try:
        message = ArticleMessage.model_validate(data)
    except ValidationError as e:
        raise QueueError(f"Invalid article payload: {e}") from e

    job_id = str(envelope.get("id") or message.link or "")
    return ArticleJob(id=job_id, message=message, raw=raw)


def encode_job(message: Dict[str, Any], job_id: Optional[str] = None) -> str:
    """Wrap a message dict into the queue envelope."""
    return json.dumps(
        {"id": job_id or message.get("link", ""), "data": message},
        ensure_ascii=False,
    )


class ArticleQueue(Protocol):
    """Contract the worker relies on."""

    async def fetch(self, timeout: float = 1.0) -> Optional[ArticleJob]:
        ...

    async def complete(self, job: ArticleJob) -> None:
        ...

    async def fail(self, job: ArticleJob, error: BaseException) -> None:
        ...

    async def close(self) -> None:
        ...


class RedisArticleQueue:
    """Reliable-list article queue on Redis."""

    def __init__(self, redis_url: str, name: str = "articles", client: Optional[Any] = None):
        self.name = name
        self.redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self.waiting_key = f"queue:{name}:waiting"
        self.active_key = f"queue:{name}:active"
        self.failed_key = f"queue:{name}:failed"

    async def publish(self, messages: Iterable[Dict[str, Any]]) -> int:
        """Append messages to the waiting list. Returns how many were added."""
        payloads: List[str] = [encode_job(m) for m in messages]
        if not payloads:
            return 0
        await self.redis.lpush(self.waiting_key, *payloads)
        logger.debug(f"Published {len(payloads)} jobs", extra={"queue": self.name})
        return len(payloads)

    async def fetch(self, timeout: float = 1.0) -> Optional[ArticleJob]:
        """Block up to ``timeout`` seconds for the next job."""
        raw = await self.redis.blmove(self.waiting_key, self.active_key, timeout, "RIGHT", "LEFT")
        if raw is None:
            return None

        try:
            return decode_job(raw)
        except QueueError as e:
            await self._move_to_failed(raw, e)
            logger.warning(f"Discarded malformed job: {e}", extra={"queue": self.name})
            return None

    async def complete(self, job: ArticleJob) -> None:
        await self.redis.lrem(self.active_key, 1, job.raw)

    async def fail(self, job: ArticleJob, error: BaseException) -> None:
        await self._move_to_failed(job.raw, error)

    async def _move_to_failed(self, raw: str, error: BaseException) -> None:
        record = json.dumps({
            "payload": raw,
            "error": f"{type(error).__name__}: {error}",
            "failed_at": get_current_utc_time().isoformat(),
        }, ensure_ascii=False)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, raw)
            pipe.lpush(self.failed_key, record)
            await pipe.execute()

    async def requeue_active(self) -> int:
        """Move jobs orphaned in the active list back to waiting."""
        moved = 0
        while await self.redis.lmove(self.active_key, self.waiting_key, "RIGHT", "LEFT"):
            moved += 1
        if moved:
            logger.info(f"Requeued {moved} orphaned jobs", extra={"queue": self.name})
        return moved

    async def close(self) -> None:
        await self.redis.aclose()

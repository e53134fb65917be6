"""Repository layer for keyword persistence and trend queries.

Batch writes run in one transaction per flush: keyword upsert, idempotent
article links, and accumulating timeseries buckets. Read helpers decode
rows into typed records before they leave this module.
"""

import math
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, desc, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newstrend.core.logging import get_logger
from newstrend.core.models import Article, ArticleKeyword, Keyword, KeywordTimeseries
from newstrend.core.time import get_current_utc_time

logger = get_logger(__name__)

MIN_KEYWORD_LENGTH = 2
MAX_KEYWORD_LENGTH = 40
MOMENTUM_WEIGHT = 0.5
RELATED_WINDOW_HOURS = 10
RELATED_ARTICLES_LIMIT = 5

_BRACKET_QUOTE_RE = re.compile(r'[()「」『』《》〈〉【】〔〕"“”\'‘’]')
_PREFIX_RE = re.compile(r'^(주식회사|\(주\)|주\)|기자|사진|제공|속보)\s*', re.IGNORECASE)
_SUFFIX_RE = re.compile(r'\s*(기자|사진|제공|속보)$', re.IGNORECASE)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class KeywordScore:
    """One keyword ready for persistence."""
    keyword: str
    score: float
    type: Optional[str] = None


@dataclass
class PendingKeywordSave:
    """Extraction result for one article, waiting to be flushed."""
    article_id: int
    keywords: List[KeywordScore]


@dataclass
class KeywordRow:
    """A keyword occurrence that survived normalization."""
    article_id: int
    keyword: str
    normalized_text: str
    score: float
    type: Optional[str]


@dataclass
class RankedKeyword:
    """One row of the windowed ranking query."""
    id: int
    display_text: str
    type: Optional[str]
    score_24h: float
    score_recent: float
    score_prev: float
    diff_score: float
    final_score: float


@dataclass
class KeywordBucket:
    """One timeseries bucket of a keyword."""
    bucket_time: datetime
    freq: int
    score_sum: float


@dataclass
class RelatedArticle:
    id: int
    publisher: str
    title: str
    url: str
    published_at: datetime
    weight: float


@dataclass
class RelatedKeyword:
    id: int
    display_text: str
    co_count: int
    weight_sum: float
    association_score: float


# =============================================================================
# NORMALIZATION AND AGGREGATION
# =============================================================================

def normalize_keyword(keyword: str) -> str:
    """
    Canonical form of a keyword, or ``""`` if it should be discarded.

    Trims, collapses whitespace, drops brackets/quotes and periods,
    lowercases and strips byline/honorific prefixes and suffixes.
    """
    if not keyword:
        return ""

    normalized = keyword.strip()
    normalized = re.sub(r'\s+', ' ', normalized)
    normalized = _BRACKET_QUOTE_RE.sub('', normalized)
    normalized = normalized.replace('.', '')
    normalized = normalized.lower()
    normalized = _PREFIX_RE.sub('', normalized)
    normalized = _SUFFIX_RE.sub('', normalized)
    normalized = normalized.strip()

    if len(normalized) < MIN_KEYWORD_LENGTH or len(normalized) > MAX_KEYWORD_LENGTH:
        return ""
    return normalized


def collect_keyword_rows(items: Iterable[PendingKeywordSave]) -> List[KeywordRow]:
    """Flatten pending saves into normalized rows, dropping empty results."""
    rows = []
    for item in items:
        for kw in item.keywords:
            normalized = normalize_keyword(kw.keyword)
            if normalized:
                rows.append(KeywordRow(
                    article_id=item.article_id,
                    keyword=kw.keyword,
                    normalized_text=normalized,
                    score=kw.score,
                    type=kw.type,
                ))
    return rows


def unique_keyword_values(rows: Sequence[KeywordRow]) -> List[Dict[str, Optional[str]]]:
    """One upsert value per normalized text; first occurrence wins the display text."""
    unique: "OrderedDict[str, Dict[str, Optional[str]]]" = OrderedDict()
    for row in rows:
        if row.normalized_text not in unique:
            unique[row.normalized_text] = {
                'normalized_text': row.normalized_text,
                'display_text': row.keyword,
                'type': row.type,
            }
    return list(unique.values())


def aggregate_timeseries(
    rows: Sequence[KeywordRow],
    keyword_ids: Dict[str, int],
    bucket_time: datetime
) -> Dict[Tuple[int, datetime], Dict[str, float]]:
    """
    Sum freq and score per ``(keyword_id, bucket_time)`` within a batch.

    A single INSERT .. ON CONFLICT can touch each target row only once, so
    duplicates must be merged before the statement is built.
    """
    buckets: Dict[Tuple[int, datetime], Dict[str, float]] = {}
    for row in rows:
        keyword_id = keyword_ids.get(row.normalized_text)
        if keyword_id is None:
            continue
        key = (keyword_id, bucket_time)
        bucket = buckets.setdefault(key, {'freq': 0, 'score_sum': 0.0})
        bucket['freq'] += 1
        bucket['score_sum'] += row.score
    return buckets


# =============================================================================
# STATEMENTS
# =============================================================================

def build_keyword_upsert(values: List[Dict[str, Optional[str]]]):
    """INSERT keywords, refreshing display text on conflict; returns ids."""
    stmt = pg_insert(Keyword).values(values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Keyword.normalized_text],
        set_={
            'display_text': stmt.excluded.display_text,
            'type': func.coalesce(Keyword.type, stmt.excluded.type),
        },
    )
    return stmt.returning(Keyword.id, Keyword.normalized_text)


def build_article_keyword_insert(values: List[Dict]):
    """INSERT links, ignoring pairs that already exist."""
    stmt = pg_insert(ArticleKeyword).values(values)
    return stmt.on_conflict_do_nothing(
        index_elements=[ArticleKeyword.article_id, ArticleKeyword.keyword_id]
    )


def build_timeseries_upsert(values: List[Dict]):
    """INSERT buckets, adding freq and score_sum onto existing rows."""
    stmt = pg_insert(KeywordTimeseries).values(values)
    return stmt.on_conflict_do_update(
        index_elements=[KeywordTimeseries.keyword_id, KeywordTimeseries.bucket_time],
        set_={
            'freq': KeywordTimeseries.freq + stmt.excluded.freq,
            'score_sum': KeywordTimeseries.score_sum + stmt.excluded.score_sum,
            'updated_at': func.now(),
        },
    )


def build_ranking_query(
    limit: int,
    now: datetime,
    window_hours: int = 24,
    recent_buckets: int = 12,
    bucket_minutes: int = 5
):
    """Windowed keyword ranking ordered by final score."""
    window_start = now - timedelta(hours=window_hours)
    recent_span = timedelta(minutes=recent_buckets * bucket_minutes)
    recent_start = now - recent_span
    prev_start = recent_start - recent_span

    ts = KeywordTimeseries
    score_24h = func.coalesce(func.sum(ts.score_sum), 0.0)
    score_recent = func.coalesce(
        func.sum(case((ts.bucket_time >= recent_start, ts.score_sum), else_=0.0)), 0.0
    )
    score_prev = func.coalesce(
        func.sum(case(
            (and_(ts.bucket_time >= prev_start, ts.bucket_time < recent_start), ts.score_sum),
            else_=0.0,
        )), 0.0
    )
    diff_score = score_recent - score_prev
    final_score = score_24h + MOMENTUM_WEIGHT * diff_score

    return (
        select(
            Keyword.id,
            Keyword.display_text,
            Keyword.type,
            score_24h.label('score_24h'),
            score_recent.label('score_recent'),
            score_prev.label('score_prev'),
            diff_score.label('diff_score'),
            final_score.label('final_score'),
        )
        .join(ts, ts.keyword_id == Keyword.id)
        .where(ts.bucket_time >= window_start)
        .group_by(Keyword.id, Keyword.display_text, Keyword.type)
        .order_by(desc('final_score'), Keyword.id)
        .limit(limit)
    )


# =============================================================================
# REPOSITORY
# =============================================================================

class KeywordRepository:
    """Keyword, link and timeseries storage on top of an async session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def save_keywords_batch(
        self,
        items: Sequence[PendingKeywordSave],
        bucket_time: datetime
    ) -> Dict[str, int]:
        """
        Persist a flush worth of extraction results in one transaction.

        Args:
            items: Pending per-article keyword lists
            bucket_time: Timeseries bucket shared by the whole batch

        Returns:
            Mapping of normalized text to keyword id

        Raises:
            Any database error, after the transaction has rolled back
        """
        if not items:
            return {}

        rows = collect_keyword_rows(items)
        if not rows:
            logger.debug(f"No valid keywords in batch of {len(items)} articles")
            return {}

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    keyword_ids = await self._upsert_keywords(session, rows)
                    await self._insert_article_keywords(session, rows, keyword_ids)
                    await self._upsert_timeseries(session, rows, keyword_ids, bucket_time)
            except Exception as e:
                logger.error(
                    f"Batch keyword save failed: {e}",
                    extra={'batch_size': len(items), 'keyword_rows': len(rows)}
                )
                raise

        logger.info(
            f"Saved {len(rows)} keyword rows from {len(items)} articles",
            extra={'unique_keywords': len(keyword_ids), 'bucket_time': bucket_time.isoformat()}
        )
        return keyword_ids

    async def _upsert_keywords(self, session: AsyncSession, rows: Sequence[KeywordRow]) -> Dict[str, int]:
        result = await session.execute(build_keyword_upsert(unique_keyword_values(rows)))
        return {normalized: keyword_id for keyword_id, normalized in result.all()}

    async def _insert_article_keywords(
        self,
        session: AsyncSession,
        rows: Sequence[KeywordRow],
        keyword_ids: Dict[str, int]
    ) -> None:
        extracted_at = get_current_utc_time()
        values = []
        seen = set()
        for row in rows:
            keyword_id = keyword_ids.get(row.normalized_text)
            if keyword_id is None or (row.article_id, keyword_id) in seen:
                continue
            seen.add((row.article_id, keyword_id))
            values.append({
                'article_id': row.article_id,
                'keyword_id': keyword_id,
                'weight': row.score,
                'extracted_at': extracted_at,
            })
        if values:
            await session.execute(build_article_keyword_insert(values))

    async def _upsert_timeseries(
        self,
        session: AsyncSession,
        rows: Sequence[KeywordRow],
        keyword_ids: Dict[str, int],
        bucket_time: datetime
    ) -> None:
        buckets = aggregate_timeseries(rows, keyword_ids, bucket_time)
        if not buckets:
            return
        values = [
            {
                'keyword_id': keyword_id,
                'bucket_time': bucket,
                'freq': totals['freq'],
                'score_sum': totals['score_sum'],
            }
            for (keyword_id, bucket), totals in buckets.items()
        ]
        await session.execute(build_timeseries_upsert(values))

    async def get_ranking_candidates(
        self,
        limit: int,
        window_hours: int = 24,
        recent_buckets: int = 12,
        bucket_minutes: int = 5,
        now: Optional[datetime] = None
    ) -> List[RankedKeyword]:
        """Top keywords over the trailing window, best first."""
        stmt = build_ranking_query(
            limit, now or get_current_utc_time(), window_hours, recent_buckets, bucket_minutes
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            RankedKeyword(
                id=int(row.id),
                display_text=row.display_text,
                type=row.type,
                score_24h=float(row.score_24h),
                score_recent=float(row.score_recent),
                score_prev=float(row.score_prev),
                diff_score=float(row.diff_score),
                final_score=float(row.final_score),
            )
            for row in rows
        ]

    async def get_keyword_timeseries(self, keyword_id: int, limit: int = 12) -> List[KeywordBucket]:
        """Most recent buckets of a keyword, newest first."""
        stmt = (
            select(KeywordTimeseries.bucket_time, KeywordTimeseries.freq, KeywordTimeseries.score_sum)
            .where(KeywordTimeseries.keyword_id == keyword_id)
            .order_by(desc(KeywordTimeseries.bucket_time))
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                KeywordBucket(bucket_time=row.bucket_time, freq=int(row.freq), score_sum=float(row.score_sum))
                for row in result.all()
            ]

    async def get_related_articles(self, keyword_id: int, now: Optional[datetime] = None) -> List[RelatedArticle]:
        """Recent articles linked to a keyword, heaviest link first."""
        cutoff = (now or get_current_utc_time()) - timedelta(hours=RELATED_WINDOW_HOURS)
        stmt = (
            select(
                Article.id, Article.publisher, Article.title, Article.url,
                Article.published_at, ArticleKeyword.weight,
            )
            .join(Article, Article.id == ArticleKeyword.article_id)
            .where(ArticleKeyword.keyword_id == keyword_id)
            .where(Article.published_at >= cutoff)
            .order_by(desc(ArticleKeyword.weight), desc(Article.published_at))
            .limit(RELATED_ARTICLES_LIMIT)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                RelatedArticle(
                    id=row.id, publisher=row.publisher, title=row.title, url=row.url,
                    published_at=row.published_at, weight=float(row.weight),
                )
                for row in result.all()
            ]

    async def get_related_keywords(self, keyword_id: int, now: Optional[datetime] = None) -> List[RelatedKeyword]:
        """Keywords co-occurring with ``keyword_id`` in recent articles."""
        cutoff = (now or get_current_utc_time()) - timedelta(hours=RELATED_WINDOW_HOURS)
        target_articles = (
            select(ArticleKeyword.article_id)
            .join(Article, Article.id == ArticleKeyword.article_id)
            .where(ArticleKeyword.keyword_id == keyword_id)
            .where(Article.published_at >= cutoff)
            .cte('target_articles')
        )
        co_count = func.count()
        weight_sum = func.sum(ArticleKeyword.weight)
        stmt = (
            select(
                Keyword.id,
                Keyword.display_text,
                co_count.label('co_count'),
                weight_sum.label('weight_sum'),
            )
            .select_from(target_articles)
            .join(ArticleKeyword, ArticleKeyword.article_id == target_articles.c.article_id)
            .join(Keyword, Keyword.id == ArticleKeyword.keyword_id)
            .where(ArticleKeyword.keyword_id != keyword_id)
            .group_by(Keyword.id, Keyword.display_text)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        related = [
            RelatedKeyword(
                id=row.id,
                display_text=row.display_text,
                co_count=int(row.co_count),
                weight_sum=float(row.weight_sum or 0.0),
                association_score=float(row.weight_sum or 0.0) * math.log(int(row.co_count) + 1),
            )
            for row in rows
        ]
        related.sort(key=lambda r: r.association_score, reverse=True)
        return related

    async def count_keywords(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(Keyword.id)))
            return result.scalar() or 0

    async def count_articles(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(Article.id)))
            return result.scalar() or 0

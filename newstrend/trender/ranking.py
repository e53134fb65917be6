"""Trending keyword ranking.

Reads an over-fetched candidate window from storage, keeps two-keyword
issues ahead of their constituent keywords, annotates rank movement
against the previous snapshot and serves the result through a short-TTL
cache.
"""

import asyncio
import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from newstrend.core.logging import get_logger
from newstrend.core.models import KeywordType
from newstrend.core.repositories import KeywordRepository, RankedKeyword, normalize_keyword
from newstrend.trender.cache import RankingCache
from newstrend.trender.extractor import COMPOSITE_DELIMITER, split_composite_key

logger = get_logger(__name__)

OVERFETCH_FACTOR = 5
MIN_CANDIDATES = 50
DEFAULT_CACHE_TTL = 60
MAX_RANKING_SIZE = 100


class RankStatus:
    NEW = "new"
    SAME = "same"
    UP = "up"
    DOWN = "down"


@dataclass
class TrendEntry:
    """One ranked entry as returned to callers."""
    id: int
    display_text: str
    type: Optional[str]
    rank: int
    status: str
    rank_change: int
    score_24h: float
    score_recent: float
    score_prev: float
    diff_score: float
    final_score: float


def candidate_type(candidate: RankedKeyword) -> str:
    """Explicit type, or inferred from the delimiter for untyped rows."""
    if candidate.type in (KeywordType.SINGLE, KeywordType.COMPOSITE):
        return candidate.type
    if COMPOSITE_DELIMITER in candidate.display_text:
        return KeywordType.COMPOSITE
    return KeywordType.SINGLE


def _text_key(text: str) -> str:
    return normalize_keyword(text) or text.strip().lower()


def select_with_composite_priority(candidates: Sequence[RankedKeyword], limit: int) -> List[RankedKeyword]:
    """
    Filter score-ordered candidates so issues win over their parts.

    A composite is accepted only if neither constituent was claimed by a
    higher-scored composite; it then claims both. Overlapping composites
    are skipped outright. Remaining slots go to single keywords that no
    accepted composite claimed. Order within each pass is storage order.
    """
    if limit <= 0:
        return []

    selected: List[RankedKeyword] = []
    used = set()

    for candidate in candidates:
        if len(selected) >= limit:
            break
        if candidate_type(candidate) != KeywordType.COMPOSITE:
            continue

        parts = [_text_key(p) for p in split_composite_key(candidate.display_text)]
        if not parts or any(p in used for p in parts):
            continue

        selected.append(candidate)
        used.update(parts)

    if len(selected) < limit:
        for candidate in candidates:
            if len(selected) >= limit:
                break
            if candidate_type(candidate) != KeywordType.SINGLE:
                continue
            if _text_key(candidate.display_text) in used:
                continue
            selected.append(candidate)

    return selected


def rank_change(new_rank: int, previous_rank: Optional[int]) -> Dict[str, Any]:
    """Status and magnitude of a move from ``previous_rank`` to ``new_rank``."""
    if previous_rank is None:
        return {'status': RankStatus.NEW, 'rank_change': 0}
    delta = previous_rank - new_rank
    if delta == 0:
        return {'status': RankStatus.SAME, 'rank_change': 0}
    return {
        'status': RankStatus.UP if delta > 0 else RankStatus.DOWN,
        'rank_change': abs(delta),
    }


def build_entries(selected: Sequence[RankedKeyword], previous_ranks: Dict[int, int]) -> List[TrendEntry]:
    entries = []
    for position, candidate in enumerate(selected, start=1):
        change = rank_change(position, previous_ranks.get(candidate.id))
        entries.append(TrendEntry(
            id=candidate.id,
            display_text=candidate.display_text,
            type=candidate_type(candidate),
            rank=position,
            status=change['status'],
            rank_change=change['rank_change'],
            score_24h=candidate.score_24h,
            score_recent=candidate.score_recent,
            score_prev=candidate.score_prev,
            diff_score=candidate.diff_score,
            final_score=candidate.final_score,
        ))
    return entries


def parse_snapshot(payload: Optional[str]) -> Dict[int, int]:
    """Map keyword id to rank from a serialized ranking."""
    if not payload:
        return {}
    try:
        data = json.loads(payload)
        return {int(entry['id']): int(entry['rank']) for entry in data}
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"Ignoring unreadable ranking snapshot: {e}")
        return {}


class RankingEngine:
    """Computes and caches the top trending keywords."""

    def __init__(
        self,
        repository: KeywordRepository,
        cache: RankingCache,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        window_hours: int = 24,
        recent_buckets: int = 12,
        bucket_minutes: int = 5,
        ranking_size: int = MAX_RANKING_SIZE,
    ):
        self.repository = repository
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.window_hours = window_hours
        self.recent_buckets = recent_buckets
        self.bucket_minutes = bucket_minutes
        self.ranking_size = ranking_size

    async def get_top_trends(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Top ``limit`` trending entries over the trailing window.

        The full ranking (``ranking_size`` entries, or ``limit`` if larger)
        is what gets cached and snapshotted; callers get a prefix of it.
        Served from cache when fresh; storage errors propagate once the
        cached copy has expired.
        """
        cached = await self._load_cached()
        if cached is not None:
            return cached[:limit]

        previous_ranks = parse_snapshot(await self.cache.get_snapshot())

        size = max(limit, self.ranking_size)
        candidates = await self.repository.get_ranking_candidates(
            max(size * OVERFETCH_FACTOR, MIN_CANDIDATES),
            window_hours=self.window_hours,
            recent_buckets=self.recent_buckets,
            bucket_minutes=self.bucket_minutes,
        )
        selected = select_with_composite_priority(candidates, size)
        entries = build_entries(selected, previous_ranks)

        payload = json.dumps([asdict(e) for e in entries], ensure_ascii=False)
        await asyncio.gather(
            self.cache.set_cached(payload, self.cache_ttl),
            self.cache.set_snapshot(payload),
        )

        logger.info(
            f"Computed ranking: {len(entries)} entries from {len(candidates)} candidates",
            extra={'limit': limit, 'candidates': len(candidates)}
        )
        return json.loads(payload)[:limit]

    async def _load_cached(self) -> Optional[List[Dict[str, Any]]]:
        payload = await self.cache.get_cached()
        if not payload:
            return None
        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable ranking cache: {e}")
            return None
        return data if isinstance(data, list) else None

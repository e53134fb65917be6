"""Tests for composite-priority ranking and the cached ranking engine."""

import json
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from newstrend.core.models import KeywordType
from newstrend.core.repositories import RankedKeyword
from newstrend.trender.cache import CACHE_KEY, SNAPSHOT_KEY, RankingCache
from newstrend.trender.ranking import (
    RankingEngine,
    RankStatus,
    candidate_type,
    parse_snapshot,
    rank_change,
    select_with_composite_priority,
)


def kw(id: int, text: str, score: float, type: Optional[str] = None) -> RankedKeyword:
    if type is None:
        type = KeywordType.COMPOSITE if ":" in text else KeywordType.SINGLE
    return RankedKeyword(
        id=id, display_text=text, type=type,
        score_24h=score, score_recent=0.0, score_prev=0.0, diff_score=0.0, final_score=score,
    )


class FakeCache:
    """In-memory RankingCache."""

    def __init__(self, cached: Optional[str] = None, snapshot: Optional[str] = None):
        self.cached = cached
        self.snapshot = snapshot
        self.ttl = None

    async def get_cached(self):
        return self.cached

    async def set_cached(self, payload, ttl_seconds):
        self.cached = payload
        self.ttl = ttl_seconds

    async def get_snapshot(self):
        return self.snapshot

    async def set_snapshot(self, payload):
        self.snapshot = payload

    async def close(self):
        pass


@pytest.fixture
def candidates():
    return [
        kw(1, "A:B", 100),
        kw(2, "B:C", 90),
        kw(3, "C", 80),
        kw(4, "A", 70),
        kw(5, "D", 60),
    ]


@pytest.fixture
def repository(candidates):
    repo = MagicMock()
    repo.get_ranking_candidates = AsyncMock(return_value=candidates)
    return repo


class TestCompositePriority:
    """Tests for the composite-first selection."""

    def test_overlapping_composite_is_skipped(self, candidates):
        selected = select_with_composite_priority(candidates, 10)

        assert [c.display_text for c in selected] == ["A:B", "C", "D"]

    def test_claimed_single_never_appears(self, candidates):
        selected = select_with_composite_priority(candidates, 10)
        texts = {c.display_text for c in selected}

        assert "A" not in texts
        assert "B" not in texts

    def test_disjoint_composites_both_accepted(self):
        selected = select_with_composite_priority(
            [kw(1, "A:B", 100), kw(2, "B:C", 90), kw(3, "C:D", 80)], 10
        )

        assert [c.display_text for c in selected] == ["A:B", "C:D"]

    def test_composites_fill_limit_first(self, candidates):
        selected = select_with_composite_priority(candidates, 1)

        assert [c.id for c in selected] == [1]

    def test_singles_follow_composites(self):
        selected = select_with_composite_priority(
            [kw(1, "X", 200), kw(2, "A:B", 100), kw(3, "Y", 50)], 3
        )

        assert [c.display_text for c in selected] == ["A:B", "X", "Y"]

    def test_constituents_match_after_normalization(self):
        selected = select_with_composite_priority(
            [kw(1, "반도체:삼성전자", 100), kw(2, "삼성전자.", 90), kw(3, "수출", 80)], 10
        )

        assert [c.id for c in selected] == [1, 3]

    def test_untyped_row_uses_delimiter(self):
        row = kw(1, "A:B", 10)
        row.type = None

        assert candidate_type(row) == KeywordType.COMPOSITE
        assert candidate_type(kw(2, "A", 10, type="legacy")) == KeywordType.SINGLE

    def test_zero_limit(self, candidates):
        assert select_with_composite_priority(candidates, 0) == []


class TestRankChange:
    """Tests for rank movement against the previous snapshot."""

    def test_statuses(self):
        assert rank_change(3, None) == {'status': RankStatus.NEW, 'rank_change': 0}
        assert rank_change(3, 3) == {'status': RankStatus.SAME, 'rank_change': 0}
        assert rank_change(1, 4) == {'status': RankStatus.UP, 'rank_change': 3}
        assert rank_change(5, 2) == {'status': RankStatus.DOWN, 'rank_change': 3}

    def test_corrupt_snapshot_is_empty(self):
        assert parse_snapshot("{not json") == {}
        assert parse_snapshot(json.dumps([{"rank": 1}])) == {}
        assert parse_snapshot(None) == {}


class TestRankingEngine:
    """Tests for cached ranking computation."""

    @pytest.mark.asyncio
    async def test_computes_and_caches(self, repository):
        cache = FakeCache()
        engine = RankingEngine(repository, cache, cache_ttl=60)

        result = await engine.get_top_trends(10)

        assert [e['display_text'] for e in result] == ["A:B", "C", "D"]
        assert [e['rank'] for e in result] == [1, 2, 3]
        assert all(e['status'] == RankStatus.NEW for e in result)
        assert cache.ttl == 60
        assert json.loads(cache.snapshot) == result
        repository.get_ranking_candidates.assert_awaited_once()
        assert repository.get_ranking_candidates.await_args.args[0] == 500

    @pytest.mark.asyncio
    async def test_overfetches_for_ranking_size(self, repository):
        engine = RankingEngine(repository, FakeCache(), ranking_size=10)

        await engine.get_top_trends(3)
        assert repository.get_ranking_candidates.await_args.args[0] == 50

        engine = RankingEngine(repository, FakeCache(), ranking_size=10)
        await engine.get_top_trends(20)
        assert repository.get_ranking_candidates.await_args.args[0] == 100

    @pytest.mark.asyncio
    async def test_cache_hit_skips_storage(self, repository):
        cache = FakeCache()
        engine = RankingEngine(repository, cache)

        first = await engine.get_top_trends(10)
        second = await engine.get_top_trends(10)

        assert first == second
        assert repository.get_ranking_candidates.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_hit_truncates_to_limit(self, repository):
        engine = RankingEngine(repository, FakeCache())

        await engine.get_top_trends(10)
        result = await engine.get_top_trends(2)

        assert len(result) == 2
        assert repository.get_ranking_candidates.await_count == 1

    @pytest.mark.asyncio
    async def test_larger_limit_within_ttl_is_served_in_full(self):
        repo = MagicMock()
        repo.get_ranking_candidates = AsyncMock(
            return_value=[kw(i, f"키워드{i}", 1000 - i) for i in range(1, 40)]
        )
        engine = RankingEngine(repo, FakeCache())

        small = await engine.get_top_trends(3)
        large = await engine.get_top_trends(20)

        assert len(small) == 3
        assert len(large) == 20
        assert large[:3] == small
        assert repo.get_ranking_candidates.await_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_holds_full_ranking(self):
        repo = MagicMock()
        repo.get_ranking_candidates = AsyncMock(
            return_value=[kw(i, f"키워드{i}", 1000 - i) for i in range(1, 40)]
        )
        cache = FakeCache()
        engine = RankingEngine(repo, cache)
        await engine.get_top_trends(3)

        assert len(json.loads(cache.snapshot)) == 39

        # Keyword 20 moves from rank 20 to rank 1 in the next computation
        repo.get_ranking_candidates.return_value = (
            [kw(20, "키워드20", 2000)] + [kw(i, f"키워드{i}", 1000 - i) for i in range(1, 40) if i != 20]
        )
        cache.cached = None
        top = await engine.get_top_trends(3)

        assert (top[0]["id"], top[0]["status"], top[0]["rank_change"]) == (20, RankStatus.UP, 19)

    @pytest.mark.asyncio
    async def test_rank_changes_from_snapshot(self, repository):
        snapshot = json.dumps([
            {"id": 5, "rank": 1},
            {"id": 1, "rank": 1},
            {"id": 3, "rank": 4},
        ])
        engine = RankingEngine(repository, FakeCache(snapshot=snapshot))

        result = await engine.get_top_trends(10)
        by_id = {e['id']: e for e in result}

        assert by_id[1]['status'] == RankStatus.SAME
        assert (by_id[3]['status'], by_id[3]['rank_change']) == (RankStatus.UP, 2)
        assert (by_id[5]['status'], by_id[5]['rank_change']) == (RankStatus.DOWN, 2)

    @pytest.mark.asyncio
    async def test_storage_error_propagates_without_cache(self, repository):
        repository.get_ranking_candidates = AsyncMock(side_effect=RuntimeError("db down"))
        engine = RankingEngine(repository, FakeCache())

        with pytest.raises(RuntimeError, match="db down"):
            await engine.get_top_trends(10)

    @pytest.mark.asyncio
    async def test_unreadable_cache_is_recomputed(self, repository):
        engine = RankingEngine(repository, FakeCache(cached="<html>"))

        result = await engine.get_top_trends(10)

        assert len(result) == 3
        repository.get_ranking_candidates.assert_awaited_once()


class TestRankingCache:
    """Tests for the Redis key layout."""

    @pytest.mark.asyncio
    async def test_cache_expires_and_snapshot_does_not(self):
        client = MagicMock()
        client.set = AsyncMock()
        client.get = AsyncMock(return_value="[]")
        cache = RankingCache(client=client)

        await cache.set_cached("[]", 60)
        await cache.set_snapshot("[]")

        assert client.set.await_args_list[0].args == (CACHE_KEY, "[]")
        assert client.set.await_args_list[0].kwargs == {'ex': 60}
        assert client.set.await_args_list[1].args == (SNAPSHOT_KEY, "[]")
        assert client.set.await_args_list[1].kwargs == {}
        assert await cache.get_snapshot() == "[]"
        client.get.assert_awaited_with(SNAPSHOT_KEY)

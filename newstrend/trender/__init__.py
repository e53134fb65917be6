"""Trend analysis package.

This package contains modules for:
- Keyword extraction and article scoring (extractor.py)
- Batched keyword persistence buffer (buffer.py)
- Queue worker pool (worker.py)
- Ranking with composite priority (ranking.py, cache.py)
- HTTP application (app.py)
"""

from newstrend.core.repositories import KeywordScore

from .extractor import (
    TrendAnalysis,
    analyze_article,
    build_composite_key,
    build_keyword_scores,
    calculate_score,
    extract_top_keywords,
    tokenize,
)

__all__ = [
    'KeywordScore',
    'TrendAnalysis',
    'analyze_article',
    'build_composite_key',
    'build_keyword_scores',
    'calculate_score',
    'extract_top_keywords',
    'tokenize',
]

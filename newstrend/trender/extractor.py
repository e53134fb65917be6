"""Heuristic keyword extraction and article scoring.

Titles are split on whitespace, cleaned of wrapping punctuation and
trailing particles, and ranked by how often each title token shows up in
the body. The two best tokens become the article's keywords and, sorted,
its composite issue key.

No stemming or POS tagging is attempted.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from newstrend.core.models import KeywordType
from newstrend.core.repositories import KeywordScore

COMPOSITE_DELIMITER = ":"
TOP_KEYWORDS = 2

BASE_SCORE = 10
FREQUENCY_CAP = 5
COMPOSITE_BOOST = 5

STOP_WORDS = frozenset([
    '기자', '보도', '관련', '이번', '대한', '통해', '에서',
    '으로', '했다', '한다', '있는', '그리고', '하지만',
    '등', '있다', '연합뉴스', '뉴스', '사진', '제공',
    '가능성', '상황', '문제', '이슈', '내용', '기술', '오늘',
    '기업', '감독', '배우', '대표', '수사', '사업', '판매', '지원', '속보',
    '사진아이덴티티', '포토', '사설', 'AI', '2026', '대한민국', '퍼스트브랜드',
    '포토+', '서울', '제주', '경찰',
])

_QUOTE_BRACKET_RE = re.compile(r'["\'`“”‘’「」『』《》〈〉【】〔〕]')
_PUNCTUATION_RE = re.compile(r'[,.;:!?\-_=+\[\]{}()]')
# Single-character case/topic particles, only at the end of a token
_TRAILING_PARTICLE_RE = re.compile(r'(은|는|이|가|을|를|의|에|로|와|과|도)$')


@dataclass
class TrendAnalysis:
    """Extraction result for a single article."""
    keywords: List[str] = field(default_factory=list)
    composite_key: str = ""
    score: int = BASE_SCORE


def clean_token(token: str) -> str:
    """Strip quote/bracket marks, punctuation and one trailing particle."""
    token = _QUOTE_BRACKET_RE.sub('', token)
    token = _PUNCTUATION_RE.sub('', token).strip()
    return _TRAILING_PARTICLE_RE.sub('', token)


def tokenize(text: Optional[str]) -> List[str]:
    """
    Split text into cleaned keyword candidates.

    Tokens of length <= 1 and stop words are dropped.
    """
    if not text:
        return []

    tokens = []
    for raw in text.split():
        token = clean_token(raw)
        if len(token) > 1 and token not in STOP_WORDS:
            tokens.append(token)
    return tokens


def count_in_body(keyword: str, body_tokens: List[str]) -> int:
    """Count body tokens that contain the keyword or are contained by it."""
    return sum(1 for t in body_tokens if keyword in t or t in keyword)


def extract_top_keywords(title: Optional[str], body: Optional[str], limit: int = TOP_KEYWORDS) -> List[str]:
    """
    Pick the title tokens that recur most in the body.

    Ties keep title order.
    """
    return rank_title_tokens(tokenize(title), tokenize(body), limit)


def rank_title_tokens(title_tokens: List[str], body_tokens: List[str], limit: int = TOP_KEYWORDS) -> List[str]:
    """Order already tokenized title tokens by body match count, then position."""
    ranked = sorted(
        enumerate(title_tokens),
        key=lambda pair: (-count_in_body(pair[1], body_tokens), pair[0]),
    )
    return [token for _, token in ranked[:limit]]


def build_composite_key(keywords: List[str]) -> str:
    """Sorted ``A:B`` key for a keyword pair, ``""`` for fewer than two."""
    if len(keywords) < 2:
        return ""
    return COMPOSITE_DELIMITER.join(sorted(keywords[:2]))


def split_composite_key(composite_key: str) -> List[str]:
    """Constituent keywords of a composite key."""
    return [part for part in composite_key.split(COMPOSITE_DELIMITER) if part]


def calculate_score(keywords: List[str], body_tokens: List[str]) -> int:
    """Base score plus capped body frequency of the extracted keywords."""
    frequency = sum(count_in_body(kw, body_tokens) for kw in keywords)
    return BASE_SCORE + min(frequency, FREQUENCY_CAP)


def analyze_article(title: Optional[str], body: Optional[str]) -> TrendAnalysis:
    """Run extraction, composite key building and scoring for one article."""
    body_tokens = tokenize(body)
    keywords = rank_title_tokens(tokenize(title), body_tokens)
    return TrendAnalysis(
        keywords=keywords,
        composite_key=build_composite_key(keywords),
        score=calculate_score(keywords, body_tokens),
    )


def build_keyword_scores(analysis: TrendAnalysis) -> List[KeywordScore]:
    """
    Per-keyword weights to persist for an article.

    Singles score ``score - rank_index``; the composite issue, when present,
    scores ``score + COMPOSITE_BOOST`` so it outranks its constituents.
    """
    scores = [
        KeywordScore(keyword=kw, score=analysis.score - idx, type=KeywordType.SINGLE)
        for idx, kw in enumerate(analysis.keywords)
    ]
    if analysis.composite_key:
        scores.append(KeywordScore(
            keyword=analysis.composite_key,
            score=analysis.score + COMPOSITE_BOOST,
            type=KeywordType.COMPOSITE,
        ))
    return scores

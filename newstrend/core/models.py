"""Database models for newstrend."""
from sqlalchemy import (
    BigInteger, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import mapped_column
from sqlalchemy.sql import func

from .db import Base


class KeywordType:
    """Values stored in ``keywords.type``."""
    SINGLE = "SINGLE"
    COMPOSITE = "COMPOSITE"


class Article(Base):
    """Scraped articles. Written by the collector, only read here."""
    __tablename__ = "articles"

    id = mapped_column(BigInteger, primary_key=True)
    publisher = mapped_column(String(50), nullable=False)
    url = mapped_column(Text, unique=True, nullable=False)
    title = mapped_column(Text, nullable=False)
    body_text = mapped_column(Text, nullable=False)
    published_at = mapped_column(DateTime(timezone=True), nullable=False)
    collected_at = mapped_column(DateTime(timezone=True), server_default=func.now())
    checksum_hash = mapped_column(Text, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())


class Keyword(Base):
    """Canonical keywords, one row per normalized text."""
    __tablename__ = "keywords"

    id = mapped_column(BigInteger, primary_key=True)
    normalized_text = mapped_column(String(255), unique=True, nullable=False)
    display_text = mapped_column(String(255), nullable=False)
    type = mapped_column(String(30), nullable=True)  # SINGLE | COMPOSITE
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())


class ArticleKeyword(Base):
    """Article to keyword links with the extraction weight."""
    __tablename__ = "article_keywords"

    id = mapped_column(BigInteger, primary_key=True)
    article_id = mapped_column(BigInteger, nullable=False)
    keyword_id = mapped_column(ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False)
    weight = mapped_column(Float, default=1.0, nullable=False)
    extracted_at = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("article_id", "keyword_id", name="uq_article_keyword"),
    )


class KeywordTimeseries(Base):
    """Per-bucket keyword frequency and accumulated score."""
    __tablename__ = "keyword_timeseries"

    id = mapped_column(BigInteger, primary_key=True)
    keyword_id = mapped_column(ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False)
    bucket_time = mapped_column(DateTime(timezone=True), nullable=False)
    freq = mapped_column(Integer, default=0, nullable=False)
    score_sum = mapped_column(Float, default=0.0, nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("keyword_id", "bucket_time", name="uq_keyword_bucket"),
    )


Index('idx_articles_published_at', Article.published_at)
Index('idx_articles_publisher_published_at', Article.publisher, Article.published_at)
Index('idx_article_keywords_keyword_article', ArticleKeyword.keyword_id, ArticleKeyword.article_id)
Index('idx_article_keywords_article_id', ArticleKeyword.article_id)
Index('idx_keyword_timeseries_bucket_score', KeywordTimeseries.bucket_time, KeywordTimeseries.score_sum)
Index('idx_keyword_timeseries_keyword_bucket', KeywordTimeseries.keyword_id, KeywordTimeseries.bucket_time)

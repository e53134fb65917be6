"""newstrend - keyword trend engine for scraped news articles."""

__version__ = "0.1.0"

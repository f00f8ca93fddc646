"""Coverage pipeline: URL canonicalization, scoring and run ingestion."""

from .canonical import TRACKING_PARAMS, canonicalize_url, is_tracking_param, url_host
from .scoring import (
    DEFAULT_AUTHORITY,
    DEFAULT_AUTHORITY_TABLE,
    AuthorityTable,
    clamp_score,
    importance_score,
    recency_boost,
    relevance_score,
)
from .ingestion import CoverageIngestor, IngestionResult, compute_since, to_article_row

__all__ = [
    "DEFAULT_AUTHORITY",
    "DEFAULT_AUTHORITY_TABLE",
    "TRACKING_PARAMS",
    "AuthorityTable",
    "CoverageIngestor",
    "IngestionResult",
    "canonicalize_url",
    "clamp_score",
    "compute_since",
    "importance_score",
    "is_tracking_param",
    "recency_boost",
    "relevance_score",
    "to_article_row",
    "url_host",
]

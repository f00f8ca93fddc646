"""Coverage search clients."""

from .base import CoverageSearchClient
from .serpapi import SerpApiSearchClient, parse_result_date, phrase_query, recency_filter

__all__ = [
    "CoverageSearchClient",
    "SerpApiSearchClient",
    "parse_result_date",
    "phrase_query",
    "recency_filter",
]

"""Relevance and importance heuristics for coverage results."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import math
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

from core import as_utc
from pipeline.canonical import url_host


DEFAULT_AUTHORITY = 50

# Tier 1: major national/international outlets. Tier 2: regional/specialty.
# Tier 3: other recognized sources.
_OUTLET_AUTHORITY: Dict[str, int] = {
    "nytimes.com": 95,
    "washingtonpost.com": 95,
    "wsj.com": 95,
    "bbc.com": 95,
    "bbc.co.uk": 95,
    "reuters.com": 95,
    "apnews.com": 95,
    "cnn.com": 90,
    "nbcnews.com": 90,
    "cbsnews.com": 90,
    "abcnews.go.com": 90,
    "theguardian.com": 90,
    "economist.com": 90,
    "bloomberg.com": 92,
    "forbes.com": 88,
    "fortune.com": 88,
    "businessinsider.com": 85,
    "usatoday.com": 82,
    "latimes.com": 85,
    "chicagotribune.com": 82,
    "sfchronicle.com": 80,
    "bostonglobe.com": 82,
    "nypost.com": 75,
    "politico.com": 85,
    "thehill.com": 80,
    "axios.com": 82,
    "techcrunch.com": 80,
    "wired.com": 80,
    "theverge.com": 78,
    "variety.com": 80,
    "hollywoodreporter.com": 80,
    "deadline.com": 78,
    "espn.com": 80,
    "si.com": 78,
    "bleacherreport.com": 72,
    "huffpost.com": 70,
    "buzzfeednews.com": 68,
    "vox.com": 72,
    "slate.com": 70,
    "salon.com": 65,
    "dailymail.co.uk": 60,
    "foxnews.com": 75,
    "msnbc.com": 75,
    "npr.org": 88,
    "pbs.org": 85,
    "time.com": 82,
    "newsweek.com": 75,
}

# (max hours since publication, boost), checked in order
_RECENCY_STEPS = ((6.0, 10), (12.0, 7), (24.0, 4))


def clamp_score(value: object) -> int:
    """Coerce any score-like value into an int in [0, 100]."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return int(max(0, min(100, round(number))))


class AuthorityTable:
    """Read-only host -> authority lookup, injected wherever importance is scored."""

    def __init__(self, scores: Optional[Mapping[str, int]] = None, default: int = DEFAULT_AUTHORITY) -> None:
        normalized = {
            str(host).strip().lower().removeprefix("www."): clamp_score(score)
            for host, score in dict(scores or {}).items()
            if str(host).strip()
        }
        self._scores = MappingProxyType(normalized)
        self._default = clamp_score(default)

    @classmethod
    def default(cls) -> "AuthorityTable":
        return cls(_OUTLET_AUTHORITY)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AuthorityTable":
        """Curated defaults with the JSON object in ``path`` layered on top."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"authority file must hold a JSON object: {path}")
        merged = dict(_OUTLET_AUTHORITY)
        merged.update({str(k): int(v) for k, v in payload.items()})
        return cls(merged)

    @property
    def scores(self) -> Mapping[str, int]:
        return self._scores

    def lookup(self, host: str) -> int:
        key = str(host or "").strip().lower()
        if key.startswith("www."):
            key = key[4:]
        return self._scores.get(key, self._default)


DEFAULT_AUTHORITY_TABLE = AuthorityTable.default()


def relevance_score(rank: int, title: str, query: str) -> int:
    """
    Score how well a search result matches the query that found it.

    Position decays logarithmically (rank 1 -> 85, tail floors at 30), query
    words longer than two characters found in the title add up to 15, and the
    whole query appearing in the title adds 5.
    """
    try:
        position = max(1, int(rank))
    except (TypeError, ValueError):
        position = 1
    position_score = max(30.0, min(95.0, 100.0 - math.log2(position + 1) * 15.0))

    query_lower = str(query or "").lower()
    title_lower = str(title or "").lower()
    query_words = [word for word in query_lower.split() if len(word) > 2]
    keyword_boost = 0.0
    if query_words:
        matched = sum(1 for word in query_words if word in title_lower)
        keyword_boost = (matched / len(query_words)) * 15.0

    phrase_bonus = 5.0 if query_lower and query_lower in title_lower else 0.0

    return int(round(min(100.0, position_score + keyword_boost + phrase_bonus)))


def recency_boost(published_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    if published_at is None:
        return 0
    current = as_utc(now) or datetime.now(timezone.utc)
    hours_ago = (current - as_utc(published_at)).total_seconds() / 3600.0
    for max_hours, boost in _RECENCY_STEPS:
        if hours_ago <= max_hours:
            return boost
    return 0


def importance_score(
    url: str,
    published_at: Optional[datetime],
    *,
    authority: Optional[AuthorityTable] = None,
    now: Optional[datetime] = None,
) -> int:
    """Outlet authority (unknown hosts get 50) plus a 0-10 recency boost."""
    table = authority or DEFAULT_AUTHORITY_TABLE
    authority_score = table.lookup(url_host(url))
    return int(round(min(100, authority_score + recency_boost(published_at, now))))

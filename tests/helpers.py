from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from core import AlertQuery, CoverageCandidate
from sources.base import CoverageSearchClient


class FakeSearchClient(CoverageSearchClient):
    """Scripted search backend recording every call."""

    def __init__(
        self,
        results: Optional[Sequence[CoverageCandidate]] = None,
        *,
        error: Optional[Exception] = None,
        on_fetch: Optional[Callable[[], None]] = None,
    ) -> None:
        self.results = list(results or [])
        self.error = error
        self.on_fetch = on_fetch
        self.calls: List[Tuple[List[AlertQuery], datetime]] = []
        self.closed = 0

    @property
    def name(self) -> str:
        return "fake"

    async def fetch_coverage(self, alerts: Sequence[AlertQuery], since: datetime) -> List[CoverageCandidate]:
        self.calls.append((list(alerts), since))
        if self.on_fetch:
            self.on_fetch()
        if self.error:
            raise self.error
        return list(self.results)

    async def close(self):
        self.closed += 1


def candidate(url: str, **fields) -> CoverageCandidate:
    payload = {"url": url, "title": "Acme Corp expands", "relevance_score": 80, "importance_score": 60}
    payload.update(fields)
    return CoverageCandidate(**payload)

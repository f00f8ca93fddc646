"""
SerpApi Search Client
Google results via serpapi.com, one paginated search per alert query
API docs: https://serpapi.com/search-api
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Set
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import SerpApiSettings, get_serpapi_settings
from core import AlertQuery, CoverageCandidate, as_utc, utcnow
from pipeline.canonical import url_host
from pipeline.scoring import AuthorityTable, importance_score, relevance_score
from utils.exceptions import SearchProviderError
from .base import CoverageSearchClient


logger = logging.getLogger(__name__)

_RELATIVE_DATE_RE = re.compile(
    r"^(\d+)\s*(second|sec|minute|min|hour|hr|day|week|month|year)s?\s+ago$",
    re.IGNORECASE,
)
_RELATIVE_UNITS = {
    "second": timedelta(seconds=1),
    "sec": timedelta(seconds=1),
    "minute": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "hr": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}
_DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%d %b %Y", "%d %B %Y", "%Y-%m-%d", "%m/%d/%Y")

# (max age of the watermark, SerpApi tbs value), checked in order
_RECENCY_WINDOWS = (
    (timedelta(hours=1), "qdr:h"),
    (timedelta(days=1), "qdr:d"),
    (timedelta(days=7), "qdr:w"),
    (timedelta(days=31), "qdr:m"),
)
# a default watermark of "24h ago" is computed moments before the search runs
_RECENCY_SLACK = timedelta(minutes=5)


def parse_result_date(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a provider date field into a UTC datetime.

    Accepts ISO-8601, RFC 2822, "Jan 5, 2024"-style dates and relative forms
    such as "3 hours ago". Returns None for anything else.
    """
    text = str(value or "").strip()
    if not text:
        return None

    match = _RELATIVE_DATE_RE.match(text)
    if match:
        current = as_utc(now) or utcnow()
        return current - int(match.group(1)) * _RELATIVE_UNITS[match.group(2).lower()]

    try:
        return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        return as_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def recency_filter(since: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Smallest SerpApi ``tbs`` window that still covers the watermark."""
    if since is None:
        return "qdr:d"
    current = as_utc(now) or utcnow()
    age = current - as_utc(since)
    for max_age, tbs in _RECENCY_WINDOWS:
        if age <= max_age + _RECENCY_SLACK:
            return tbs
    return "qdr:y"


def phrase_query(query: str) -> str:
    """Quote the alert query as one phrase; inner double quotes are dropped."""
    text = str(query or "").strip().replace('"', "")
    return f'"{text}"' if text else ""


class SerpApiSearchClient(CoverageSearchClient):
    """
    SerpApi coverage client

    Behaviour:
    - one search per alert query, pages followed via ``serpapi_pagination``
    - raw-URL dedup across every alert in one ``fetch_coverage`` call
    - any HTTP or provider error aborts the whole fetch
    - transport errors are retried with exponential backoff
    - each fetch opens and closes its own HTTP client unless one is injected,
      so runs on separate event loops never share a connection pool
    """

    def __init__(
        self,
        settings: Optional[SerpApiSettings] = None,
        *,
        authority: Optional[AuthorityTable] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Callable[[], datetime] = utcnow,
        retry_wait: Any = None,
    ):
        self.settings = settings or get_serpapi_settings()
        self._authority = authority or AuthorityTable.default()
        self._http = http_client
        self._transport = transport
        self._now = now
        self._retry_wait = retry_wait if retry_wait is not None else wait_exponential(multiplier=0.5, max=8)

    @property
    def name(self) -> str:
        return "SerpApi"

    def is_configured(self) -> bool:
        return bool(str(self.settings.api_key or "").strip())

    def _new_http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.settings.timeout), transport=self._transport)

    async def fetch_coverage(self, alerts: Sequence[AlertQuery], since: datetime) -> List[CoverageCandidate]:
        searchable = [alert for alert in alerts if str(alert.query or "").strip()]
        if not searchable:
            return []

        if self._http is not None:
            return await self._fetch_all(self._http, searchable, since)
        async with self._new_http() as http:
            return await self._fetch_all(http, searchable, since)

    async def _fetch_all(
        self,
        http: httpx.AsyncClient,
        searchable: Sequence[AlertQuery],
        since: datetime,
    ) -> List[CoverageCandidate]:
        tbs = recency_filter(since, self._now())
        seen: Set[str] = set()
        candidates: List[CoverageCandidate] = []
        for alert in searchable:
            added = await self._search_alert(http, alert, tbs, seen, candidates)
            self._log_search(alert.query, added)

        logger.info(f"[{self.name}] Found {len(candidates)} articles for {len(searchable)} alerts")
        return candidates

    async def _search_alert(
        self,
        http: httpx.AsyncClient,
        alert: AlertQuery,
        tbs: str,
        seen: Set[str],
        out: List[CoverageCandidate],
    ) -> int:
        query = phrase_query(alert.query)
        logger.info(f"[{self.name}] Searching for: {query} (tbs={tbs})")

        url: Optional[str] = self.settings.base_url
        params: Optional[Dict[str, str]] = self._initial_params(query, tbs)
        page_index = 0
        added = 0

        while url and page_index < self.settings.max_pages:
            data = await self._get_page(http, url, params, query=query, page=page_index + 1)

            organic = data.get("organic_results") or []
            if not organic:
                break

            for idx, item in enumerate(organic):
                if not isinstance(item, dict):
                    continue
                link = str(item.get("link") or "").strip()
                if not link or link in seen:
                    continue
                seen.add(link)
                rank = self._rank(item, page_index, idx)
                out.append(self._to_candidate(item, alert, rank))
                added += 1

            pagination = data.get("serpapi_pagination") or {}
            next_link = str(pagination.get("next") or pagination.get("next_link") or "").strip()
            if not next_link:
                break

            url, params = self._next_url(next_link, query=query), None
            page_index += 1

        return added

    def _initial_params(self, query: str, tbs: str) -> Dict[str, str]:
        return {
            "engine": self.settings.engine,
            "q": query,
            "tbs": tbs,
            "hl": self.settings.hl,
            "gl": self.settings.gl,
            "google_domain": self.settings.google_domain,
            "location": self.settings.location,
            "api_key": str(self.settings.api_key or ""),
        }

    def _next_url(self, next_link: str, *, query: str) -> str:
        try:
            parts = urlsplit(next_link)
        except ValueError as exc:
            raise SearchProviderError(f"SerpApi error: unparseable pagination link for {query}") from exc
        if not parts.scheme or not parts.netloc:
            raise SearchProviderError(f"SerpApi error: unparseable pagination link for {query}", link=next_link)
        pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "api_key"]
        pairs.append(("api_key", str(self.settings.api_key or "")))
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), ""))

    async def _get_page(
        self,
        http: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, str]],
        *,
        query: str,
        page: int,
    ) -> Dict[str, Any]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.max_retries)),
                wait=self._retry_wait,
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await http.get(url, params=params)
        except httpx.TransportError as exc:
            self._log_error(f"Request failed (q={query}, page={page})", exc)
            raise SearchProviderError(f"SerpApi request failed: {exc}") from exc

        if not response.is_success:
            text = response.text.strip()[:500]
            self._log_error(f"HTTP error (q={query}, page={page})", Exception(f"{response.status_code} {text}"))
            raise SearchProviderError(
                f"SerpApi error: {response.status_code} {text}".strip(),
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SearchProviderError(
                "SerpApi error: unparseable response body",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise SearchProviderError("SerpApi error: unexpected response shape", status_code=response.status_code)

        error = str(data.get("error") or "").strip()
        if error:
            self._log_error(f"Provider error (q={query}, page={page})", Exception(error))
            raise SearchProviderError(f"SerpApi error: {error}", status_code=response.status_code)

        metadata = data.get("search_metadata") or {}
        if isinstance(metadata, dict) and metadata.get("status") == "Error":
            raise SearchProviderError("SerpApi error: Search failed", status_code=response.status_code)

        return data

    def _rank(self, item: Dict[str, Any], page_index: int, idx: int) -> int:
        try:
            position = int(item.get("position") or 0)
        except (TypeError, ValueError):
            position = 0
        if position >= 1:
            return position
        return page_index * self.settings.page_size + idx + 1

    def _to_candidate(self, item: Dict[str, Any], alert: AlertQuery, rank: int) -> CoverageCandidate:
        url = str(item.get("link") or "").strip()
        now = self._now()

        outlet = str(item.get("source") or "").strip() or url_host(url) or None
        published_at = parse_result_date(item.get("date"), now)
        title = str(item.get("title") or "").strip()
        snippet = str(item.get("snippet") or "").strip()

        return CoverageCandidate(
            url=url,
            title=title or None,
            outlet=outlet,
            published_at=published_at,
            snippet=snippet or None,
            relevance_score=relevance_score(rank, title, alert.query),
            importance_score=importance_score(url, published_at, authority=self._authority, now=now),
            rank=rank,
            alert_id=alert.alert_id,
            query=alert.query,
        )

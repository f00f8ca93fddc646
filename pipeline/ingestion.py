"""Run ingestion: active alerts -> search client -> article upsert -> watermark."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable, Dict, List, Optional, Sequence

from core import Alert, AlertQuery, ArticleRow, CoverageCandidate, Run, as_utc, utcnow
from sources.base import CoverageSearchClient
from storage import CoverageStore, collapse_rows
from utils.exceptions import ClientNotFoundError, StorageError
from .canonical import canonicalize_url
from .scoring import clamp_score

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(hours=24)


@dataclass
class IngestionResult:
    alerts_considered: int
    articles_upserted: int
    alerts_checked: int
    since: Optional[datetime]


def compute_since(alerts: Sequence[Alert], now: Optional[datetime] = None) -> datetime:
    """Latest ``last_checked_at`` among the alerts, else 24h before ``now``."""
    checked = [as_utc(alert.last_checked_at) for alert in alerts if alert.last_checked_at is not None]
    if checked:
        return max(checked)
    return (as_utc(now) or utcnow()) - DEFAULT_LOOKBACK


def _merge_labels(labels: Sequence[str], extra: Optional[str]) -> List[str]:
    merged: List[str] = []
    for label in list(labels) + ([extra] if extra else []):
        text = str(label or "").strip()
        if text and text not in merged:
            merged.append(text)
    return merged


def to_article_row(
    candidate: CoverageCandidate,
    *,
    ingested_at: datetime,
    alert_label: Optional[str] = None,
) -> ArticleRow:
    """Map a search candidate onto the mutable article fields."""
    canonical = str(candidate.canonical_url or "").strip() or canonicalize_url(candidate.url)
    return ArticleRow(
        url=candidate.url,
        canonical_url=canonical,
        title=candidate.title,
        outlet=candidate.outlet,
        published_at=as_utc(candidate.published_at) or ingested_at,
        snippet=candidate.snippet,
        summary=candidate.summary,
        relevance_score=clamp_score(candidate.relevance_score),
        importance_score=clamp_score(candidate.importance_score),
        labels=_merge_labels(candidate.labels, alert_label),
    )


class CoverageIngestor:
    """Executes the ingestion body of one claimed run."""

    def __init__(
        self,
        store: CoverageStore,
        search_client: CoverageSearchClient,
        *,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._search_client = search_client
        self._now = now

    async def ingest(self, run: Run) -> IngestionResult:
        client = self._store.get_client(run.client_id)
        if client is None:
            raise ClientNotFoundError(run.client_id)

        alerts = self._store.list_alerts(client.id, active_only=True)
        if not alerts:
            logger.info("ingest_skipped run_id=%s client_id=%s reason=no_active_alerts", run.id, client.id)
            return IngestionResult(alerts_considered=0, articles_upserted=0, alerts_checked=0, since=None)

        now = as_utc(self._now())
        since = compute_since(alerts, now)
        logger.info(
            "ingest_start run_id=%s client_id=%s alerts=%d since=%s",
            run.id,
            client.id,
            len(alerts),
            since.isoformat(),
        )

        queries = [AlertQuery(alert_id=alert.id, query=alert.query) for alert in alerts]
        candidates = await self._search_client.fetch_coverage(queries, since)

        labels_by_alert: Dict[str, Optional[str]] = {alert.id: alert.label for alert in alerts}
        rows = collapse_rows(
            to_article_row(
                candidate,
                ingested_at=now,
                alert_label=labels_by_alert.get(candidate.alert_id or ""),
            )
            for candidate in candidates
            if str(candidate.url or "").strip()
        )
        upserted = self._store.upsert_articles(client.org_id, client.id, rows) if rows else 0
        logger.info("ingest_upserted run_id=%s candidates=%d articles=%d", run.id, len(candidates), upserted)

        checked = self._advance_watermark(run, alerts, now)
        return IngestionResult(
            alerts_considered=len(alerts),
            articles_upserted=upserted,
            alerts_checked=checked,
            since=since,
        )

    async def aclose(self) -> None:
        await self._search_client.close()

    def _advance_watermark(self, run: Run, alerts: Sequence[Alert], now: datetime) -> int:
        try:
            checked = self._store.mark_alerts_checked([alert.id for alert in alerts], now)
            self._store.touch_client(run.client_id, now)
            return checked
        except StorageError as exc:
            logger.warning("watermark_advance_failed run_id=%s error=%s", run.id, exc)
            return 0

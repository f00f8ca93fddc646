"""In-memory coverage store for single-process deployments and tests."""

from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Collection, Dict, List, Optional, Sequence, Tuple

from core import (
    ACTIVE_RUN_STATES,
    Alert,
    Article,
    ArticleRow,
    Client,
    CoverageFilter,
    CoveragePage,
    Run,
    RunState,
    utcnow,
)
from utils.exceptions import ClientNotFoundError
from .base import CoverageStore, collapse_rows, new_id


def _published_sort_key(article: Article) -> Tuple[int, float]:
    if article.published_at is None:
        return (1, 0.0)
    return (0, -article.published_at.timestamp())


def _matches(article: Article, filters: CoverageFilter) -> bool:
    if filters.date_from is not None:
        if article.published_at is None or article.published_at < filters.date_from:
            return False
    if filters.date_to is not None:
        if article.published_at is None or article.published_at > filters.date_to:
            return False
    if filters.min_score is not None and article.relevance_score < filters.min_score:
        return False
    if filters.text:
        needle = filters.text.lower()
        haystacks = (article.title, article.outlet, article.snippet)
        if not any(needle in str(value or "").lower() for value in haystacks):
            return False
    return True


class InMemoryCoverageStore(CoverageStore):
    """Thread-safe dict-backed store; every read returns a copy."""

    def __init__(self) -> None:
        self._clients: Dict[str, Client] = {}
        self._alerts: Dict[str, Alert] = {}
        self._runs: Dict[str, Run] = {}
        self._articles: Dict[Tuple[str, str], Article] = {}
        self._lock = Lock()

    # --- clients ---------------------------------------------------------

    def create_client(self, org_id: str, name: str, description: Optional[str] = None) -> Client:
        client = Client(id=new_id("client"), org_id=str(org_id), name=name, description=description)
        with self._lock:
            self._clients[client.id] = client
            return client.model_copy(deep=True)

    def get_client(self, client_id: str) -> Optional[Client]:
        with self._lock:
            client = self._clients.get(client_id)
            return client.model_copy(deep=True) if client else None

    def list_clients(self, org_id: str) -> List[Client]:
        with self._lock:
            clients = [item for item in self._clients.values() if item.org_id == org_id]
            clients.sort(key=lambda item: item.created_at, reverse=True)
            return [item.model_copy(deep=True) for item in clients]

    def delete_client(self, client_id: str) -> bool:
        with self._lock:
            if self._clients.pop(client_id, None) is None:
                return False
            self._alerts = {k: v for k, v in self._alerts.items() if v.client_id != client_id}
            self._runs = {k: v for k, v in self._runs.items() if v.client_id != client_id}
            self._articles = {k: v for k, v in self._articles.items() if k[0] != client_id}
            return True

    def touch_client(self, client_id: str, at: datetime) -> None:
        with self._lock:
            client = self._clients.get(client_id)
            if client:
                client.updated_at = at

    # --- alerts ----------------------------------------------------------

    def create_alert(self, client_id: str, query: str, label: Optional[str] = None, active: bool = True) -> Alert:
        alert = Alert(id=new_id("alert"), client_id=client_id, query=query, label=label, active=active)
        with self._lock:
            if client_id not in self._clients:
                raise ClientNotFoundError(client_id)
            self._alerts[alert.id] = alert
            return alert.model_copy(deep=True)

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy(deep=True) if alert else None

    def list_alerts(self, client_id: str, *, active_only: bool = False) -> List[Alert]:
        with self._lock:
            alerts = [
                item
                for item in self._alerts.values()
                if item.client_id == client_id and (item.active or not active_only)
            ]
            alerts.sort(key=lambda item: item.created_at)
            return [item.model_copy(deep=True) for item in alerts]

    def set_alert_active(self, alert_id: str, active: bool) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if not alert:
                return None
            alert.active = bool(active)
            return alert.model_copy(deep=True)

    def delete_alert(self, client_id: str, alert_id: str) -> bool:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if not alert or alert.client_id != client_id:
                return False
            del self._alerts[alert_id]
            return True

    def mark_alerts_checked(self, alert_ids: Sequence[str], checked_at: datetime) -> int:
        updated = 0
        with self._lock:
            for alert_id in alert_ids:
                alert = self._alerts.get(alert_id)
                if alert:
                    alert.last_checked_at = checked_at
                    updated += 1
        return updated

    # --- runs ------------------------------------------------------------

    def create_run_if_idle(self, org_id: str, client_id: str) -> Tuple[Run, bool]:
        with self._lock:
            for run in self._runs.values():
                if run.client_id == client_id and run.status in ACTIVE_RUN_STATES:
                    return run.model_copy(deep=True), False
            run = Run(id=new_id("run"), org_id=str(org_id), client_id=client_id, status=RunState.QUEUED)
            self._runs[run.id] = run
            return run.model_copy(deep=True), True

    def get_run(self, run_id: str) -> Optional[Run]:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    def list_runs(self, client_id: str) -> List[Run]:
        with self._lock:
            runs = [item for item in self._runs.values() if item.client_id == client_id]
            runs.sort(key=lambda item: item.created_at, reverse=True)
            return [item.model_copy(deep=True) for item in runs]

    def oldest_queued_run(self) -> Optional[Run]:
        with self._lock:
            queued = [item for item in self._runs.values() if item.status == RunState.QUEUED]
            if not queued:
                return None
            return min(queued, key=lambda item: item.created_at).model_copy(deep=True)

    def transition_run(
        self,
        run_id: str,
        *,
        expected: Collection[RunState],
        status: RunState,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        with self._lock:
            run = self._runs.get(run_id)
            if not run or run.status not in set(expected):
                return False
            run.status = status
            if started_at is not None:
                run.started_at = started_at
            if finished_at is not None:
                run.finished_at = finished_at
            run.error_message = error_message
            return True

    # --- articles --------------------------------------------------------

    def upsert_articles(self, org_id: str, client_id: str, rows: Sequence[ArticleRow]) -> int:
        batch = collapse_rows(rows)
        if not batch:
            return 0
        now = utcnow()
        with self._lock:
            if client_id not in self._clients:
                raise ClientNotFoundError(client_id)
            for row in batch:
                key = (client_id, row.canonical_url)
                existing = self._articles.get(key)
                self._articles[key] = Article(
                    id=existing.id if existing else new_id("article"),
                    org_id=str(org_id),
                    client_id=client_id,
                    created_at=existing.created_at if existing else now,
                    updated_at=now,
                    **row.model_dump(),
                )
        return len(batch)

    def query_articles(self, client_id: str, filters: Optional[CoverageFilter] = None) -> CoveragePage:
        filters = filters or CoverageFilter()
        with self._lock:
            matched = [
                item
                for key, item in self._articles.items()
                if key[0] == client_id and _matches(item, filters)
            ]
            matched.sort(key=_published_sort_key)
            page = matched[filters.offset: filters.offset + filters.limit]
            return CoveragePage(
                articles=[item.model_copy(deep=True) for item in page],
                total=len(matched),
                limit=filters.limit,
                offset=filters.offset,
            )

    def get_article(self, client_id: str, canonical_url: str) -> Optional[Article]:
        with self._lock:
            article = self._articles.get((client_id, canonical_url))
            return article.model_copy(deep=True) if article else None

"""
Coverage Store
Data-store contract for clients, alerts, runs and articles
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Collection, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from core import (
    Alert,
    Article,
    ArticleRow,
    Client,
    CoverageFilter,
    CoveragePage,
    Run,
    RunState,
)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def collapse_rows(rows: Iterable[ArticleRow]) -> List[ArticleRow]:
    """Keep one row per canonical URL; the last occurrence wins, first position is kept."""
    by_key = {}
    for row in rows:
        by_key[row.canonical_url] = row
    return list(by_key.values())


class CoverageStore(ABC):
    """
    Storage contract consumed by the run coordinator, ingestion and the API.

    Implementations must make ``create_run_if_idle`` and ``transition_run``
    atomic: the first enforces at most one QUEUED/RUNNING run per client, the
    second is a compare-and-swap on the run status.
    """

    # --- clients ---------------------------------------------------------

    @abstractmethod
    def create_client(self, org_id: str, name: str, description: Optional[str] = None) -> Client:
        """Insert a client."""

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[Client]:
        """Fetch a client by id."""

    @abstractmethod
    def list_clients(self, org_id: str) -> List[Client]:
        """Clients of an org, newest first."""

    @abstractmethod
    def delete_client(self, client_id: str) -> bool:
        """Delete a client together with its alerts, runs and articles."""

    @abstractmethod
    def touch_client(self, client_id: str, at: datetime) -> None:
        """Bump ``updated_at``."""

    # --- alerts ----------------------------------------------------------

    @abstractmethod
    def create_alert(self, client_id: str, query: str, label: Optional[str] = None, active: bool = True) -> Alert:
        """Insert an alert for an existing client."""

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[Alert]:
        """Fetch an alert by id."""

    @abstractmethod
    def list_alerts(self, client_id: str, *, active_only: bool = False) -> List[Alert]:
        """Alerts of a client, oldest first."""

    @abstractmethod
    def set_alert_active(self, alert_id: str, active: bool) -> Optional[Alert]:
        """Toggle participation in refreshes."""

    @abstractmethod
    def delete_alert(self, client_id: str, alert_id: str) -> bool:
        """Hard delete an alert belonging to ``client_id``."""

    @abstractmethod
    def mark_alerts_checked(self, alert_ids: Sequence[str], checked_at: datetime) -> int:
        """Advance ``last_checked_at``; returns the number of alerts updated."""

    # --- runs ------------------------------------------------------------

    @abstractmethod
    def create_run_if_idle(self, org_id: str, client_id: str) -> Tuple[Run, bool]:
        """
        Insert a QUEUED run unless the client already has an active one.

        Returns:
            (run, created): the new run and True, or the active run and False
        """

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[Run]:
        """Fetch a run by id."""

    @abstractmethod
    def list_runs(self, client_id: str) -> List[Run]:
        """Runs of a client, newest first."""

    @abstractmethod
    def oldest_queued_run(self) -> Optional[Run]:
        """The QUEUED run with the smallest ``created_at``."""

    @abstractmethod
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
        """
        Set ``status`` only if the current status is in ``expected``.

        ``started_at``/``finished_at`` are written when given; ``error_message``
        is always written. Returns True when exactly one row changed.
        """

    # --- articles --------------------------------------------------------

    @abstractmethod
    def upsert_articles(self, org_id: str, client_id: str, rows: Sequence[ArticleRow]) -> int:
        """Insert or fully overwrite articles keyed by (client_id, canonical_url)."""

    @abstractmethod
    def query_articles(self, client_id: str, filters: Optional[CoverageFilter] = None) -> CoveragePage:
        """Filtered, paged coverage ordered by published_at desc (nulls last)."""

    @abstractmethod
    def get_article(self, client_id: str, canonical_url: str) -> Optional[Article]:
        """Fetch one article by its dedup key."""

    def close(self) -> None:
        """Release resources."""

"""SQLite-backed coverage store shared by API and worker processes."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sqlite3
from threading import RLock
from typing import Any, Collection, Iterator, List, Optional, Sequence, Tuple, Union

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
    as_utc,
    utcnow,
)
from utils.exceptions import ClientNotFoundError, StorageError
from .base import CoverageStore, collapse_rows, new_id


logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_clients_org ON clients(org_id);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    query TEXT NOT NULL,
    label TEXT,
    active INTEGER NOT NULL DEFAULT 1,
    last_checked_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_client ON alerts(client_id, active);

CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_runs_status_created ON runs(status, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_one_active
    ON runs(client_id) WHERE status IN ('QUEUED', 'RUNNING');

CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    canonical_url TEXT NOT NULL,
    title TEXT,
    outlet TEXT,
    published_at TEXT,
    snippet TEXT,
    summary TEXT,
    relevance_score INTEGER NOT NULL DEFAULT 0,
    importance_score INTEGER NOT NULL DEFAULT 0,
    labels TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (client_id, canonical_url)
);
CREATE INDEX IF NOT EXISTS idx_articles_client_published ON articles(client_id, published_at);
"""

_RUN_COLUMNS = "id, org_id, client_id, status, started_at, finished_at, error_message, created_at"
_ALERT_COLUMNS = "id, client_id, query, label, active, last_checked_at, created_at"
_CLIENT_COLUMNS = "id, org_id, name, description, created_at, updated_at"
_ARTICLE_COLUMNS = (
    "id, org_id, client_id, url, canonical_url, title, outlet, published_at, snippet, summary, "
    "relevance_score, importance_score, labels, created_at, updated_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text so string comparison orders like time."""
    value = as_utc(value)
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _py_lower(value: Any) -> Optional[str]:
    # SQLite's lower() only folds ASCII
    return None if value is None else str(value).lower()


def _like_pattern(text: str) -> str:
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqliteCoverageStore(CoverageStore):
    """
    Coverage store on a SQLite file.

    Several worker processes may open the same file: run claims are
    ``UPDATE ... WHERE status IN (...)`` statements and the single-active-run
    rule is checked inside ``BEGIN IMMEDIATE`` and backed by a partial unique
    index.
    """

    def __init__(self, path: Union[str, Path] = ":memory:", timeout: float = 30.0) -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self.path,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        self._lock = RLock()
        with self._lock:
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)

    @contextmanager
    def _transaction(self, mode: str = "DEFERRED") -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute(f"BEGIN {mode}")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StorageError(f"SQLite error: {exc}", {"path": self.path}) from exc

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params))
            except sqlite3.Error as exc:
                raise StorageError(f"SQLite error: {exc}", {"path": self.path}) from exc

    def _query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchone()

    def _query_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchall()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- row mapping -----------------------------------------------------

    @staticmethod
    def _client(row: sqlite3.Row) -> Client:
        return Client(
            id=row["id"],
            org_id=row["org_id"],
            name=row["name"],
            description=row["description"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _alert(row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            client_id=row["client_id"],
            query=row["query"],
            label=row["label"],
            active=bool(row["active"]),
            last_checked_at=_dt(row["last_checked_at"]),
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _run(row: sqlite3.Row) -> Run:
        return Run(
            id=row["id"],
            org_id=row["org_id"],
            client_id=row["client_id"],
            status=RunState(row["status"]),
            started_at=_dt(row["started_at"]),
            finished_at=_dt(row["finished_at"]),
            error_message=row["error_message"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _article(row: sqlite3.Row) -> Article:
        try:
            labels = json.loads(row["labels"] or "[]")
        except json.JSONDecodeError:
            logger.warning("Bad labels JSON on article %s", row["id"])
            labels = []
        return Article(
            id=row["id"],
            org_id=row["org_id"],
            client_id=row["client_id"],
            url=row["url"],
            canonical_url=row["canonical_url"],
            title=row["title"],
            outlet=row["outlet"],
            published_at=_dt(row["published_at"]),
            snippet=row["snippet"],
            summary=row["summary"],
            relevance_score=int(row["relevance_score"]),
            importance_score=int(row["importance_score"]),
            labels=[str(item) for item in labels],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # --- clients ---------------------------------------------------------

    def create_client(self, org_id: str, name: str, description: Optional[str] = None) -> Client:
        client = Client(id=new_id("client"), org_id=str(org_id), name=name, description=description)
        self._execute(
            f"INSERT INTO clients ({_CLIENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (
                client.id,
                client.org_id,
                client.name,
                client.description,
                _ts(client.created_at),
                _ts(client.updated_at),
            ),
        )
        return client

    def get_client(self, client_id: str) -> Optional[Client]:
        row = self._query_one(f"SELECT {_CLIENT_COLUMNS} FROM clients WHERE id = ?", (client_id,))
        return self._client(row) if row else None

    def list_clients(self, org_id: str) -> List[Client]:
        rows = self._query_all(
            f"SELECT {_CLIENT_COLUMNS} FROM clients WHERE org_id = ? ORDER BY created_at DESC",
            (org_id,),
        )
        return [self._client(row) for row in rows]

    def delete_client(self, client_id: str) -> bool:
        cursor = self._execute("DELETE FROM clients WHERE id = ?", (client_id,))
        return cursor.rowcount == 1

    def touch_client(self, client_id: str, at: datetime) -> None:
        self._execute("UPDATE clients SET updated_at = ? WHERE id = ?", (_ts(at), client_id))

    # --- alerts ----------------------------------------------------------

    def create_alert(self, client_id: str, query: str, label: Optional[str] = None, active: bool = True) -> Alert:
        alert = Alert(id=new_id("alert"), client_id=client_id, query=query, label=label, active=active)
        if self.get_client(client_id) is None:
            raise ClientNotFoundError(client_id)
        self._execute(
            f"INSERT INTO alerts ({_ALERT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                alert.id,
                alert.client_id,
                alert.query,
                alert.label,
                1 if alert.active else 0,
                None,
                _ts(alert.created_at),
            ),
        )
        return alert

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        row = self._query_one(f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE id = ?", (alert_id,))
        return self._alert(row) if row else None

    def list_alerts(self, client_id: str, *, active_only: bool = False) -> List[Alert]:
        sql = f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE client_id = ?"
        if active_only:
            sql += " AND active = 1"
        sql += " ORDER BY created_at ASC"
        return [self._alert(row) for row in self._query_all(sql, (client_id,))]

    def set_alert_active(self, alert_id: str, active: bool) -> Optional[Alert]:
        self._execute("UPDATE alerts SET active = ? WHERE id = ?", (1 if active else 0, alert_id))
        return self.get_alert(alert_id)

    def delete_alert(self, client_id: str, alert_id: str) -> bool:
        cursor = self._execute("DELETE FROM alerts WHERE id = ? AND client_id = ?", (alert_id, client_id))
        return cursor.rowcount == 1

    def mark_alerts_checked(self, alert_ids: Sequence[str], checked_at: datetime) -> int:
        ids = [str(item) for item in alert_ids]
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        cursor = self._execute(
            f"UPDATE alerts SET last_checked_at = ? WHERE id IN ({placeholders})",
            [_ts(checked_at), *ids],
        )
        return cursor.rowcount

    # --- runs ------------------------------------------------------------

    def create_run_if_idle(self, org_id: str, client_id: str) -> Tuple[Run, bool]:
        active = tuple(state.value for state in ACTIVE_RUN_STATES)
        with self._transaction("IMMEDIATE") as conn:
            row = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM runs WHERE client_id = ? AND status IN (?, ?) "
                "ORDER BY created_at ASC LIMIT 1",
                (client_id, *active),
            ).fetchone()
            if row:
                return self._run(row), False
            run = Run(id=new_id("run"), org_id=str(org_id), client_id=client_id, status=RunState.QUEUED)
            conn.execute(
                f"INSERT INTO runs ({_RUN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (run.id, run.org_id, run.client_id, run.status.value, None, None, None, _ts(run.created_at)),
            )
            return run, True

    def get_run(self, run_id: str) -> Optional[Run]:
        row = self._query_one(f"SELECT {_RUN_COLUMNS} FROM runs WHERE id = ?", (run_id,))
        return self._run(row) if row else None

    def list_runs(self, client_id: str) -> List[Run]:
        rows = self._query_all(
            f"SELECT {_RUN_COLUMNS} FROM runs WHERE client_id = ? ORDER BY created_at DESC",
            (client_id,),
        )
        return [self._run(row) for row in rows]

    def oldest_queued_run(self) -> Optional[Run]:
        row = self._query_one(
            f"SELECT {_RUN_COLUMNS} FROM runs WHERE status = ? ORDER BY created_at ASC LIMIT 1",
            (RunState.QUEUED.value,),
        )
        return self._run(row) if row else None

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
        states = [RunState(item).value for item in expected]
        if not states:
            return False
        placeholders = ",".join("?" * len(states))
        cursor = self._execute(
            f"""
            UPDATE runs
            SET status = ?,
                started_at = COALESCE(?, started_at),
                finished_at = COALESCE(?, finished_at),
                error_message = ?
            WHERE id = ? AND status IN ({placeholders})
            """,
            [status.value, _ts(started_at), _ts(finished_at), error_message, run_id, *states],
        )
        return cursor.rowcount == 1

    # --- articles --------------------------------------------------------

    def upsert_articles(self, org_id: str, client_id: str, rows: Sequence[ArticleRow]) -> int:
        batch = collapse_rows(rows)
        if not batch:
            return 0
        now = _ts(utcnow())
        params = [
            (
                new_id("article"),
                str(org_id),
                client_id,
                row.url,
                row.canonical_url,
                row.title,
                row.outlet,
                _ts(row.published_at),
                row.snippet,
                row.summary,
                int(row.relevance_score),
                int(row.importance_score),
                json.dumps(list(row.labels), ensure_ascii=False),
                now,
                now,
            )
            for row in batch
        ]
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM clients WHERE id = ?", (client_id,)).fetchone() is None:
                raise ClientNotFoundError(client_id)
            conn.executemany(
                f"""
                INSERT INTO articles ({_ARTICLE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(client_id, canonical_url) DO UPDATE SET
                    org_id = excluded.org_id,
                    url = excluded.url,
                    title = excluded.title,
                    outlet = excluded.outlet,
                    published_at = excluded.published_at,
                    snippet = excluded.snippet,
                    summary = excluded.summary,
                    relevance_score = excluded.relevance_score,
                    importance_score = excluded.importance_score,
                    labels = excluded.labels,
                    updated_at = excluded.updated_at
                """,
                params,
            )
        return len(batch)

    def query_articles(self, client_id: str, filters: Optional[CoverageFilter] = None) -> CoveragePage:
        filters = filters or CoverageFilter()
        where = ["client_id = ?"]
        params: List[Any] = [client_id]
        if filters.date_from is not None:
            where.append("published_at >= ?")
            params.append(_ts(filters.date_from))
        if filters.date_to is not None:
            where.append("published_at <= ?")
            params.append(_ts(filters.date_to))
        if filters.min_score is not None:
            where.append("relevance_score >= ?")
            params.append(int(filters.min_score))
        if filters.text:
            pattern = _like_pattern(filters.text)
            where.append(
                "(py_lower(coalesce(title, '')) LIKE ? ESCAPE '\\' "
                "OR py_lower(coalesce(outlet, '')) LIKE ? ESCAPE '\\' "
                "OR py_lower(coalesce(snippet, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        clause = " AND ".join(where)

        total = self._query_one(f"SELECT COUNT(*) FROM articles WHERE {clause}", params)[0]
        rows = self._query_all(
            f"""
            SELECT {_ARTICLE_COLUMNS} FROM articles
            WHERE {clause}
            ORDER BY published_at IS NULL, published_at DESC, rowid ASC
            LIMIT ? OFFSET ?
            """,
            [*params, filters.limit, filters.offset],
        )
        return CoveragePage(
            articles=[self._article(row) for row in rows],
            total=int(total),
            limit=filters.limit,
            offset=filters.offset,
        )

    def get_article(self, client_id: str, canonical_url: str) -> Optional[Article]:
        row = self._query_one(
            f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE client_id = ? AND canonical_url = ?",
            (client_id, canonical_url),
        )
        return self._article(row) if row else None

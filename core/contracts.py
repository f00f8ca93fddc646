"""Canonical data contracts for clients, alerts, runs and coverage articles."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RunState(str, Enum):
    """Run lifecycle: QUEUED -> RUNNING -> SUCCESS | FAILED."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


ACTIVE_RUN_STATES = frozenset({RunState.QUEUED, RunState.RUNNING})
TERMINAL_RUN_STATES = frozenset({RunState.SUCCESS, RunState.FAILED})

CANCELLED_MESSAGE = "Cancelled by user"


class Client(BaseModel):
    """Monitored company or topic."""

    id: str
    org_id: str
    name: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name", mode="before")
    @classmethod
    def _non_empty_name(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("Name is required")
        return text

    @field_validator("description", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


class Alert(BaseModel):
    """Search-term subscription; only active alerts take part in a refresh."""

    id: str
    client_id: str
    query: str
    label: Optional[str] = None
    active: bool = True
    last_checked_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("query", mode="before")
    @classmethod
    def _non_empty_query(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("Search term is required")
        return text

    @field_validator("label", mode="before")
    @classmethod
    def _optional_label(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


class Run(BaseModel):
    """One execution attempt of the refresh pipeline for a client."""

    id: str
    org_id: str
    client_id: str
    status: RunState = RunState.QUEUED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RUN_STATES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATES


class Article(BaseModel):
    """Deduplicated coverage item, unique per (client_id, canonical_url)."""

    id: str
    org_id: str
    client_id: str
    url: str
    canonical_url: str
    title: Optional[str] = None
    outlet: Optional[str] = None
    published_at: Optional[datetime] = None
    snippet: Optional[str] = None
    summary: Optional[str] = None
    relevance_score: int = 0
    importance_score: int = 0
    labels: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ArticleRow(BaseModel):
    """Mutable article fields written by an upsert."""

    url: str
    canonical_url: str
    title: Optional[str] = None
    outlet: Optional[str] = None
    published_at: Optional[datetime] = None
    snippet: Optional[str] = None
    summary: Optional[str] = None
    relevance_score: int = 0
    importance_score: int = 0
    labels: List[str] = Field(default_factory=list)


class AlertQuery(BaseModel):
    """(alert_id, query) pair handed to a search client."""

    alert_id: str
    query: str


class CoverageCandidate(BaseModel):
    """Normalized search result before it becomes an article row."""

    url: str
    canonical_url: Optional[str] = None
    title: Optional[str] = None
    outlet: Optional[str] = None
    published_at: Optional[datetime] = None
    snippet: Optional[str] = None
    summary: Optional[str] = None
    relevance_score: int = 0
    importance_score: int = 0
    labels: List[str] = Field(default_factory=list)
    rank: int = 1
    alert_id: Optional[str] = None
    query: Optional[str] = None


class CoverageFilter(BaseModel):
    """Dashboard coverage query."""

    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    text: Optional[str] = None
    min_score: Optional[int] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @field_validator("text", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None

    @field_validator("date_from", "date_to")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class CoveragePage(BaseModel):
    """One page of a client's coverage plus the unpaged total."""

    articles: List[Article] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0


class RefreshTicket(BaseModel):
    """Result of a refresh request: a new run, or the run already in flight."""

    run_id: str
    status: RunState
    created: bool = True

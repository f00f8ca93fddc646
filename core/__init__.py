"""Core contracts and shared types."""

from .contracts import (
    ACTIVE_RUN_STATES,
    CANCELLED_MESSAGE,
    TERMINAL_RUN_STATES,
    Alert,
    AlertQuery,
    Article,
    ArticleRow,
    Client,
    CoverageCandidate,
    CoverageFilter,
    CoveragePage,
    RefreshTicket,
    Run,
    RunState,
    as_utc,
    utcnow,
)

__all__ = [
    "ACTIVE_RUN_STATES",
    "CANCELLED_MESSAGE",
    "TERMINAL_RUN_STATES",
    "Alert",
    "AlertQuery",
    "Article",
    "ArticleRow",
    "Client",
    "CoverageCandidate",
    "CoverageFilter",
    "CoveragePage",
    "RefreshTicket",
    "Run",
    "RunState",
    "as_utc",
    "utcnow",
]

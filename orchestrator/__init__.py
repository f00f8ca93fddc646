"""Run orchestration: coordinator, worker loop and status poller."""

from .poller import HttpRunStatusSource, RunStatusPoller
from .service import RunCoordinator
from .worker import RefreshWorker, RunOutcome

__all__ = [
    "HttpRunStatusSource",
    "RefreshWorker",
    "RunCoordinator",
    "RunOutcome",
    "RunStatusPoller",
]

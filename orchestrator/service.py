"""Run coordinator: refresh requests, worker claims and cancellation."""

from __future__ import annotations

import logging
from typing import List, Optional

from core import (
    ACTIVE_RUN_STATES,
    CANCELLED_MESSAGE,
    TERMINAL_RUN_STATES,
    RefreshTicket,
    Run,
    RunState,
    utcnow,
)
from storage import CoverageStore
from utils.exceptions import ClientNotFoundError, RunNotActiveError, RunNotFoundError

logger = logging.getLogger(__name__)


class RunCoordinator:
    """Central owner of the run lifecycle; every status change goes through here."""

    def __init__(self, store: CoverageStore) -> None:
        self._store = store

    @property
    def store(self) -> CoverageStore:
        return self._store

    def enqueue_refresh(self, client_id: str, org_id: Optional[str] = None) -> RefreshTicket:
        """
        Request a refresh for a client.

        Returns a ticket for a new QUEUED run, or ``created=False`` with the id
        of the run already active for that client.
        """
        client = self._store.get_client(client_id)
        if client is None or (org_id is not None and client.org_id != org_id):
            raise ClientNotFoundError(client_id)

        run, created = self._store.create_run_if_idle(client.org_id, client.id)
        if created:
            logger.info("run_enqueued run_id=%s client_id=%s", run.id, client.id)
        else:
            logger.info("run_already_active run_id=%s client_id=%s status=%s", run.id, client.id, run.status.value)
        return RefreshTicket(run_id=run.id, status=run.status, created=created)

    def next_queued_run(self) -> Optional[Run]:
        return self._store.oldest_queued_run()

    def claim_run(self, run_id: str) -> bool:
        """Move QUEUED -> RUNNING. Exactly one concurrent caller wins."""
        claimed = self._store.transition_run(
            run_id,
            expected=(RunState.QUEUED,),
            status=RunState.RUNNING,
            started_at=utcnow(),
        )
        if claimed:
            logger.info("run_claimed run_id=%s", run_id)
        return claimed

    def complete_run(self, run_id: str, status: RunState, error_message: Optional[str] = None) -> bool:
        """
        Record the terminal outcome of a RUNNING run.

        Returns False when the run is no longer RUNNING, e.g. it was cancelled
        while the worker was busy; the stored outcome is left untouched.
        """
        status = RunState(status)
        if status not in TERMINAL_RUN_STATES:
            raise ValueError(f"complete_run requires a terminal status, got {status.value}")

        completed = self._store.transition_run(
            run_id,
            expected=(RunState.RUNNING,),
            status=status,
            finished_at=utcnow(),
            error_message=error_message if status == RunState.FAILED else None,
        )
        if completed:
            logger.info("run_completed run_id=%s status=%s", run_id, status.value)
        else:
            logger.warning("run_complete_ignored run_id=%s status=%s reason=not_running", run_id, status.value)
        return completed

    def cancel_run(self, run_id: str, org_id: Optional[str] = None) -> Run:
        """Force an active run to FAILED with the cancellation message."""
        run = self.get_run(run_id, org_id=org_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status not in ACTIVE_RUN_STATES:
            raise RunNotActiveError(run_id, run.status.value)

        cancelled = self._store.transition_run(
            run_id,
            expected=ACTIVE_RUN_STATES,
            status=RunState.FAILED,
            finished_at=utcnow(),
            error_message=CANCELLED_MESSAGE,
        )
        if not cancelled:
            current = self._store.get_run(run_id)
            raise RunNotActiveError(run_id, current.status.value if current else None)

        logger.info("run_cancelled run_id=%s", run_id)
        updated = self._store.get_run(run_id)
        if updated is None:
            raise RunNotFoundError(run_id)
        return updated

    def get_run(self, run_id: str, org_id: Optional[str] = None) -> Optional[Run]:
        run = self._store.get_run(run_id)
        if run is None or (org_id is not None and run.org_id != org_id):
            return None
        return run

    def list_runs(self, client_id: str) -> List[Run]:
        """Runs for a client, newest first."""
        return self._store.list_runs(client_id)

"""Polling worker that claims queued runs and executes ingestion."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import threading
from typing import Optional

from core import Run, RunState
from pipeline.ingestion import CoverageIngestor, IngestionResult
from .service import RunCoordinator

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    run_id: str
    status: RunState
    articles_upserted: int = 0
    error_message: Optional[str] = None
    recorded: bool = True


class RefreshWorker:
    """Single-threaded worker loop: poll, claim, ingest, complete."""

    def __init__(
        self,
        coordinator: RunCoordinator,
        ingestor: CoverageIngestor,
        *,
        poll_interval: float = 5.0,
        worker_id: Optional[str] = None,
    ) -> None:
        self._coordinator = coordinator
        self._ingestor = ingestor
        self._poll_interval = max(0.0, float(poll_interval))
        self._worker_id = worker_id or "worker"

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def run_next(self) -> Optional[RunOutcome]:
        """Process the oldest queued run, if any. Returns None when nothing was executed."""
        run = self._coordinator.next_queued_run()
        if run is None:
            return None
        if not self._coordinator.claim_run(run.id):
            logger.info("run_claim_lost run_id=%s worker_id=%s reason=claimed by another worker", run.id, self._worker_id)
            return None

        logger.info("run_start run_id=%s client_id=%s worker_id=%s", run.id, run.client_id, self._worker_id)
        try:
            result = asyncio.run(self._execute(run))
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.exception("run_failed run_id=%s error=%s", run.id, message)
            recorded = self._coordinator.complete_run(run.id, RunState.FAILED, message)
            self._log_if_ignored(run.id, recorded)
            return RunOutcome(run_id=run.id, status=RunState.FAILED, error_message=message, recorded=recorded)

        recorded = self._coordinator.complete_run(run.id, RunState.SUCCESS)
        self._log_if_ignored(run.id, recorded)
        return RunOutcome(
            run_id=run.id,
            status=RunState.SUCCESS,
            articles_upserted=result.articles_upserted,
            recorded=recorded,
        )

    def run_forever(
        self,
        stop_event: Optional[threading.Event] = None,
        max_iterations: Optional[int] = None,
    ) -> int:
        """Loop until ``stop_event`` is set. Returns the number of runs executed."""
        stop_event = stop_event or threading.Event()
        iterations = 0
        processed = 0
        logger.info("worker_start worker_id=%s poll_interval=%.1f", self._worker_id, self._poll_interval)

        while not stop_event.is_set():
            if max_iterations is not None and iterations >= max_iterations:
                break
            iterations += 1
            try:
                outcome = self.run_next()
            except Exception as exc:
                logger.exception("worker_iteration_failed worker_id=%s error=%s", self._worker_id, exc)
                outcome = None

            if outcome is None:
                stop_event.wait(self._poll_interval)
            else:
                processed += 1

        logger.info("worker_stop worker_id=%s processed=%d", self._worker_id, processed)
        return processed

    async def _execute(self, run: Run) -> IngestionResult:
        try:
            return await self._ingestor.ingest(run)
        finally:
            await self._ingestor.aclose()

    @staticmethod
    def _log_if_ignored(run_id: str, recorded: bool) -> None:
        if not recorded:
            logger.warning("run_outcome_discarded run_id=%s reason=run no longer RUNNING (cancelled)", run_id)

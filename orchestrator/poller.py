"""Client-side run status polling."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from core import Run
from utils.exceptions import PollTimeoutError, RunNotFoundError

logger = logging.getLogger(__name__)

RunFetcher = Callable[[str], Optional[Run]]


class HttpRunStatusSource:
    """Fetch a run snapshot from the HTTP API (``GET /api/runs/{run_id}``)."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        *,
        org_id: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = str(base_url or "").rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._headers = {"X-Org-Id": org_id} if org_id else {}

    def __call__(self, run_id: str) -> Optional[Run]:
        response = self._client.get(f"{self._base_url}/api/runs/{run_id}", headers=self._headers)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Run.model_validate(response.json()["run"])

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class RunStatusPoller:
    """Poll a run until it reaches SUCCESS or FAILED."""

    def __init__(
        self,
        fetch_run: RunFetcher,
        *,
        interval: float = 2.0,
        timeout: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_run = fetch_run
        self._interval = max(0.0, float(interval))
        self._timeout = max(0.0, float(timeout))
        self._sleep = sleep
        self._clock = clock

    def wait(self, run_id: str) -> Run:
        deadline = self._clock() + self._timeout
        polls = 0
        while True:
            polls += 1
            try:
                run = self._fetch_run(run_id)
            except httpx.HTTPError as exc:
                logger.warning("poll_fetch_failed run_id=%s attempt=%d error=%s", run_id, polls, exc)
            else:
                if run is None:
                    raise RunNotFoundError(run_id)
                if run.is_terminal:
                    logger.info("poll_done run_id=%s status=%s polls=%d", run_id, run.status.value, polls)
                    return run

            if self._clock() >= deadline:
                raise PollTimeoutError(run_id, self._timeout)
            self._sleep(self._interval)

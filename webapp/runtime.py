"""Shared runtime singletons for web/CLI entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Optional

from config import Settings, get_settings
from orchestrator import RefreshWorker, RunCoordinator
from pipeline import AuthorityTable, CoverageIngestor
from sources import CoverageSearchClient, SerpApiSearchClient
from storage import CoverageStore, build_store


@dataclass
class ServiceRuntime:
    settings: Settings
    store: CoverageStore
    coordinator: RunCoordinator
    search_client: CoverageSearchClient
    ingestor: CoverageIngestor
    worker: RefreshWorker


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    store: Optional[CoverageStore] = None,
    search_client: Optional[CoverageSearchClient] = None,
) -> ServiceRuntime:
    settings = settings or get_settings()
    store = store or build_store(settings.storage)
    if search_client is None:
        authority = (
            AuthorityTable.from_file(settings.scoring.authority_file)
            if settings.scoring.authority_file
            else AuthorityTable.default()
        )
        search_client = SerpApiSearchClient(settings.serpapi, authority=authority)

    coordinator = RunCoordinator(store)
    ingestor = CoverageIngestor(store, search_client)
    worker = RefreshWorker(
        coordinator,
        ingestor,
        poll_interval=settings.worker.poll_interval,
        worker_id=settings.worker.worker_id,
    )
    return ServiceRuntime(
        settings=settings,
        store=store,
        coordinator=coordinator,
        search_client=search_client,
        ingestor=ingestor,
        worker=worker,
    )


_RUNTIME: Optional[ServiceRuntime] = None
_LOCK = Lock()


def get_runtime() -> ServiceRuntime:
    global _RUNTIME
    with _LOCK:
        if _RUNTIME is None:
            _RUNTIME = build_runtime()
        return _RUNTIME


from __future__ import annotations

from datetime import datetime, timedelta, timezone
import threading
from typing import List

import httpx
import pytest
from tenacity import wait_none

from config import SerpApiSettings
from core import CANCELLED_MESSAGE, RunState, utcnow
from orchestrator import RefreshWorker, RunCoordinator
from pipeline import CoverageIngestor
from sources import SerpApiSearchClient
from storage import InMemoryCoverageStore, SqliteCoverageStore
from utils.exceptions import StorageError

from helpers import FakeSearchClient, candidate


def _serpapi(handler) -> SerpApiSearchClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SerpApiSearchClient(SerpApiSettings(api_key="test-key"), http_client=http, retry_wait=wait_none())


def _worker(store, search_client) -> RefreshWorker:
    coordinator = RunCoordinator(store)
    return RefreshWorker(coordinator, CoverageIngestor(store, search_client), poll_interval=0)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryCoverageStore()
        return
    sqlite_store = SqliteCoverageStore(tmp_path / "worker.db")
    yield sqlite_store
    sqlite_store.close()


def test_refresh_dedups_tracking_variants_into_one_article(store) -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "organic_results": [
                    {"position": 1, "link": "https://news.example.com/acme?utm_source=google", "title": "Acme Corp wins"},
                    {"position": 2, "link": "https://news.example.com/acme?utm_source=twitter", "title": "Acme Corp wins"},
                ]
            },
        )

    client = store.create_client("org_1", "Acme Corp")
    alert = store.create_alert(client.id, "Acme Corp")
    worker = _worker(store, _serpapi(handler))
    ticket = RunCoordinator(store).enqueue_refresh(client.id)

    before = utcnow()
    outcome = worker.run_next()

    assert outcome is not None
    assert outcome.run_id == ticket.run_id
    assert outcome.status == RunState.SUCCESS
    assert outcome.articles_upserted == 1
    assert len(requests) == 1
    assert requests[0].url.params["tbs"] == "qdr:d"

    page = store.query_articles(client.id)
    assert page.total == 1
    assert page.articles[0].canonical_url == "https://news.example.com/acme"

    checked = store.get_alert(alert.id).last_checked_at
    assert checked is not None
    assert before - timedelta(seconds=1) <= checked <= utcnow() + timedelta(seconds=1)

    run = store.get_run(ticket.run_id)
    assert run.status == RunState.SUCCESS
    assert run.started_at is not None and run.finished_at is not None


def test_provider_http_500_fails_run_without_side_effects(store) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="Internal Server Error")

    client = store.create_client("org_1", "Acme Corp")
    alert = store.create_alert(client.id, "Acme Corp")
    worker = _worker(store, _serpapi(handler))
    ticket = RunCoordinator(store).enqueue_refresh(client.id)

    outcome = worker.run_next()

    assert outcome.status == RunState.FAILED
    run = store.get_run(ticket.run_id)
    assert run.status == RunState.FAILED
    assert "500" in run.error_message
    assert store.query_articles(client.id).total == 0
    assert store.get_alert(alert.id).last_checked_at is None


def test_client_without_active_alerts_succeeds_without_provider_call(store) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json={"organic_results": []})

    client = store.create_client("org_1", "Acme Corp")
    paused = store.create_alert(client.id, "Acme Corp")
    store.set_alert_active(paused.id, False)
    worker = _worker(store, _serpapi(handler))
    ticket = RunCoordinator(store).enqueue_refresh(client.id)

    outcome = worker.run_next()

    assert outcome.status == RunState.SUCCESS
    assert outcome.articles_upserted == 0
    assert calls["n"] == 0
    assert store.get_run(ticket.run_id).status == RunState.SUCCESS
    assert store.get_alert(paused.id).last_checked_at is None


def test_run_next_returns_none_when_idle() -> None:
    store = InMemoryCoverageStore()
    assert _worker(store, FakeSearchClient()).run_next() is None


def test_run_next_skips_run_claimed_elsewhere() -> None:
    store = InMemoryCoverageStore()
    client = store.create_client("org_1", "Acme")
    store.create_alert(client.id, "Acme")
    coordinator = RunCoordinator(store)
    ticket = coordinator.enqueue_refresh(client.id)
    search = FakeSearchClient()

    class _LosingCoordinator(RunCoordinator):
        def claim_run(self, run_id: str) -> bool:
            coordinator.claim_run(run_id)
            return super().claim_run(run_id)

    worker = RefreshWorker(_LosingCoordinator(store), CoverageIngestor(store, search), poll_interval=0)

    assert worker.run_next() is None
    assert search.calls == []
    assert store.get_run(ticket.run_id).status == RunState.RUNNING


def test_cancel_during_execution_is_not_overwritten() -> None:
    store = InMemoryCoverageStore()
    client = store.create_client("org_1", "Acme")
    store.create_alert(client.id, "Acme")
    coordinator = RunCoordinator(store)
    ticket = coordinator.enqueue_refresh(client.id)
    search = FakeSearchClient(
        [candidate("https://a.example.com/1")],
        on_fetch=lambda: coordinator.cancel_run(ticket.run_id),
    )
    worker = RefreshWorker(coordinator, CoverageIngestor(store, search), poll_interval=0)

    outcome = worker.run_next()

    assert outcome.status == RunState.SUCCESS
    assert outcome.recorded is False
    run = store.get_run(ticket.run_id)
    assert run.status == RunState.FAILED
    assert run.error_message == CANCELLED_MESSAGE
    # the in-flight upsert still lands
    assert store.query_articles(client.id).total == 1
    assert search.closed == 1


def test_run_forever_processes_queue_and_survives_iteration_errors() -> None:
    store = InMemoryCoverageStore()
    first = store.create_client("org_1", "First")
    second = store.create_client("org_1", "Second")
    for client in (first, second):
        store.create_alert(client.id, client.name)
    coordinator = RunCoordinator(store)
    first_ticket = coordinator.enqueue_refresh(first.id)
    second_ticket = coordinator.enqueue_refresh(second.id)

    class _FlakyCoordinator(RunCoordinator):
        failed_once = False

        def next_queued_run(self):
            if not self.failed_once:
                self.failed_once = True
                raise RuntimeError("store unavailable")
            return super().next_queued_run()

    worker = RefreshWorker(_FlakyCoordinator(store), CoverageIngestor(store, FakeSearchClient()), poll_interval=0)

    processed = worker.run_forever(max_iterations=5)

    assert processed == 2
    assert store.get_run(first_ticket.run_id).status == RunState.SUCCESS
    assert store.get_run(second_ticket.run_id).status == RunState.SUCCESS


def test_run_forever_stops_on_event() -> None:
    store = InMemoryCoverageStore()
    worker = _worker(store, FakeSearchClient())
    stop_event = threading.Event()
    stop_event.set()

    assert worker.run_forever(stop_event=stop_event) == 0


def test_upsert_storage_error_fails_run_and_keeps_watermark() -> None:
    class _BrokenUpsertStore(InMemoryCoverageStore):
        def upsert_articles(self, org_id, client_id, rows):
            raise StorageError("SQLite error: database is locked")

    store = _BrokenUpsertStore()
    client = store.create_client("org_1", "Acme")
    alert = store.create_alert(client.id, "Acme")
    ticket = RunCoordinator(store).enqueue_refresh(client.id)
    worker = _worker(store, FakeSearchClient([candidate("https://a.example.com/1")]))

    outcome = worker.run_next()

    assert outcome.status == RunState.FAILED
    assert outcome.error_message == "SQLite error: database is locked"
    run = store.get_run(ticket.run_id)
    assert run.status == RunState.FAILED
    assert run.error_message == "SQLite error: database is locked"
    assert store.get_alert(alert.id).last_checked_at is None
    assert store.query_articles(client.id).total == 0


def test_overlapping_runs_do_not_share_http_client() -> None:
    first_in_flight = threading.Event()
    release_first = threading.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params["q"] == '"Acme"' and "start" not in params:
            first_in_flight.set()
            assert release_first.wait(5)
            return httpx.Response(
                200,
                json={
                    "organic_results": [{"position": 1, "link": "https://a.example.com/1", "title": "Acme"}],
                    "serpapi_pagination": {"next": "https://serpapi.com/search.json?q=%22Acme%22&start=10"},
                },
            )
        if params["q"] == '"Acme"':
            return httpx.Response(
                200,
                json={"organic_results": [{"position": 11, "link": "https://a.example.com/2", "title": "Acme"}]},
            )
        return httpx.Response(
            200,
            json={"organic_results": [{"position": 1, "link": "https://b.example.com/1", "title": "Beta"}]},
        )

    store = InMemoryCoverageStore()
    acme = store.create_client("org_1", "Acme")
    beta = store.create_client("org_1", "Beta")
    store.create_alert(acme.id, "Acme")
    store.create_alert(beta.id, "Beta")
    coordinator = RunCoordinator(store)
    acme_ticket = coordinator.enqueue_refresh(acme.id)
    beta_ticket = coordinator.enqueue_refresh(beta.id)

    search = SerpApiSearchClient(
        SerpApiSettings(api_key="test-key"),
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
    )
    worker = _worker(store, search)

    outcomes = {}
    first = threading.Thread(target=lambda: outcomes.setdefault("acme", worker.run_next()))
    first.start()
    try:
        assert first_in_flight.wait(5)
        outcomes["beta"] = worker.run_next()
    finally:
        release_first.set()
        first.join(5)

    assert outcomes["beta"].run_id == beta_ticket.run_id
    assert outcomes["beta"].status == RunState.SUCCESS
    assert outcomes["acme"].run_id == acme_ticket.run_id
    assert outcomes["acme"].status == RunState.SUCCESS
    assert outcomes["acme"].articles_upserted == 2
    assert store.get_run(acme_ticket.run_id).status == RunState.SUCCESS

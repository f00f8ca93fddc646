from __future__ import annotations

import threading

import pytest

from core import CANCELLED_MESSAGE, RunState
from orchestrator.service import RunCoordinator
from storage import InMemoryCoverageStore
from utils.exceptions import ClientNotFoundError, RunNotActiveError, RunNotFoundError


def _build(org_id: str = "org_1"):
    store = InMemoryCoverageStore()
    client = store.create_client(org_id, "Acme Corp")
    return RunCoordinator(store), store, client


def test_enqueue_returns_existing_active_run() -> None:
    svc, store, client = _build()

    first = svc.enqueue_refresh(client.id)
    second = svc.enqueue_refresh(client.id)

    assert first.created is True
    assert first.status == RunState.QUEUED
    assert second.created is False
    assert second.run_id == first.run_id
    assert len(store.list_runs(client.id)) == 1


def test_enqueue_unknown_client_creates_nothing() -> None:
    svc, store, client = _build()

    with pytest.raises(ClientNotFoundError):
        svc.enqueue_refresh("client_missing")
    with pytest.raises(ClientNotFoundError):
        svc.enqueue_refresh(client.id, org_id="org_other")
    assert store.list_runs(client.id) == []


def test_claim_then_complete_success() -> None:
    svc, _, client = _build()
    ticket = svc.enqueue_refresh(client.id)

    queued = svc.next_queued_run()
    assert queued is not None and queued.id == ticket.run_id
    assert svc.claim_run(ticket.run_id) is True
    assert svc.next_queued_run() is None

    running = svc.get_run(ticket.run_id)
    assert running.status == RunState.RUNNING
    assert running.started_at is not None

    assert svc.complete_run(ticket.run_id, RunState.SUCCESS) is True
    done = svc.get_run(ticket.run_id)
    assert done.status == RunState.SUCCESS
    assert done.finished_at is not None
    assert done.error_message is None


def test_claim_race_has_exactly_one_winner() -> None:
    svc, _, client = _build()
    ticket = svc.enqueue_refresh(client.id)
    barrier = threading.Barrier(6)
    wins = []

    def _claim() -> None:
        barrier.wait()
        wins.append(svc.claim_run(ticket.run_id))

    threads = [threading.Thread(target=_claim) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert wins.count(True) == 1
    assert wins.count(False) == 5


def test_complete_requires_running_and_terminal_status() -> None:
    svc, _, client = _build()
    ticket = svc.enqueue_refresh(client.id)

    assert svc.complete_run(ticket.run_id, RunState.SUCCESS) is False
    assert svc.get_run(ticket.run_id).status == RunState.QUEUED

    svc.claim_run(ticket.run_id)
    with pytest.raises(ValueError):
        svc.complete_run(ticket.run_id, RunState.QUEUED)

    assert svc.complete_run(ticket.run_id, RunState.FAILED, "SerpApi error: 500") is True
    failed = svc.get_run(ticket.run_id)
    assert failed.status == RunState.FAILED
    assert failed.error_message == "SerpApi error: 500"


@pytest.mark.parametrize("claim_first", [False, True])
def test_cancel_active_run(claim_first: bool) -> None:
    svc, _, client = _build()
    ticket = svc.enqueue_refresh(client.id)
    if claim_first:
        svc.claim_run(ticket.run_id)

    cancelled = svc.cancel_run(ticket.run_id)

    assert cancelled.status == RunState.FAILED
    assert cancelled.error_message == CANCELLED_MESSAGE
    assert cancelled.finished_at is not None
    # the client is free for a new refresh
    assert svc.enqueue_refresh(client.id).created is True


def test_cancel_terminal_or_unknown_run_is_rejected() -> None:
    svc, _, client = _build()
    ticket = svc.enqueue_refresh(client.id)
    svc.claim_run(ticket.run_id)
    svc.complete_run(ticket.run_id, RunState.SUCCESS)

    with pytest.raises(RunNotActiveError, match="Run is not active"):
        svc.cancel_run(ticket.run_id)
    with pytest.raises(RunNotFoundError):
        svc.cancel_run("run_missing")
    with pytest.raises(RunNotFoundError):
        svc.cancel_run(ticket.run_id, org_id="org_other")
    assert svc.get_run(ticket.run_id).status == RunState.SUCCESS


def test_late_completion_does_not_overwrite_cancellation() -> None:
    svc, _, client = _build()
    ticket = svc.enqueue_refresh(client.id)
    svc.claim_run(ticket.run_id)
    svc.cancel_run(ticket.run_id)

    assert svc.complete_run(ticket.run_id, RunState.SUCCESS) is False
    run = svc.get_run(ticket.run_id)
    assert run.status == RunState.FAILED
    assert run.error_message == CANCELLED_MESSAGE


def test_get_run_respects_org_and_list_runs_newest_first() -> None:
    svc, _, client = _build()
    first = svc.enqueue_refresh(client.id)
    svc.cancel_run(first.run_id)
    second = svc.enqueue_refresh(client.id)

    assert svc.get_run(first.run_id, org_id="org_1") is not None
    assert svc.get_run(first.run_id, org_id="org_other") is None
    assert [run.id for run in svc.list_runs(client.id)] == [second.run_id, first.run_id]

from __future__ import annotations

import importlib
import json
import sys

import pytest

from config import Settings
from storage import InMemoryCoverageStore
from webapp.runtime import build_runtime

from helpers import FakeSearchClient, candidate


def _invoke(monkeypatch, capsys, *argv: str) -> dict:
    module = importlib.import_module("main")
    monkeypatch.setattr(sys, "argv", ["main.py", *argv])
    module.main()
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


@pytest.fixture
def runtime(monkeypatch):
    module = importlib.import_module("main")
    settings = Settings()
    settings.serpapi.api_key = "test-key"
    runtime = build_runtime(
        settings,
        store=InMemoryCoverageStore(),
        search_client=FakeSearchClient([candidate("https://a.example.com/story?utm_medium=email")]),
    )
    monkeypatch.setattr(module, "get_runtime", lambda: runtime)
    monkeypatch.setattr(module, "get_settings", lambda: settings)
    return runtime


def test_cli_refresh_flow(runtime, monkeypatch, capsys) -> None:
    client_id = _invoke(monkeypatch, capsys, "add-client", "--name", "Acme Corp")["client"]["id"]
    alert = _invoke(monkeypatch, capsys, "add-alert", "--client-id", client_id, "--query", "Acme Corp")["alert"]
    assert alert["client_id"] == client_id

    run_id = _invoke(monkeypatch, capsys, "refresh", "--client-id", client_id)["run_id"]
    conflict = _invoke(monkeypatch, capsys, "refresh", "--client-id", client_id)
    assert conflict == {"error": "A run is already in progress", "run_id": run_id}

    processed = _invoke(monkeypatch, capsys, "worker-run-next")
    assert processed["processed"] is True
    assert processed["status"] == "SUCCESS"

    waited = _invoke(monkeypatch, capsys, "wait", "--run-id", run_id, "--timeout", "1")
    assert waited["run"]["status"] == "SUCCESS"

    coverage = _invoke(monkeypatch, capsys, "coverage", "--client-id", client_id)
    assert coverage["total"] == 1
    assert coverage["articles"][0]["canonical_url"] == "https://a.example.com/story"


def test_cli_cancel_and_errors(runtime, monkeypatch, capsys) -> None:
    client_id = _invoke(monkeypatch, capsys, "add-client", "--name", "Acme Corp")["client"]["id"]
    run_id = _invoke(monkeypatch, capsys, "refresh", "--client-id", client_id)["run_id"]

    cancelled = _invoke(monkeypatch, capsys, "cancel", "--run-id", run_id)
    assert cancelled["run"]["error_message"] == "Cancelled by user"

    with pytest.raises(SystemExit):
        _invoke(monkeypatch, capsys, "cancel", "--run-id", run_id)
    assert json.loads(capsys.readouterr().out.strip())["error"] == "Run is not active"

    with pytest.raises(SystemExit):
        _invoke(monkeypatch, capsys, "status", "--run-id", "run_missing")

"""Coverage dashboard API: clients, alerts, refresh runs and coverage queries."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core import Client, CoverageFilter, Run
from utils.exceptions import (
    AlertNotFoundError,
    ClientNotFoundError,
    PressClipperError,
    RunNotActiveError,
    RunNotFoundError,
    ValidationError,
)
from webapp.runtime import ServiceRuntime, get_runtime


logger = logging.getLogger(__name__)

app = FastAPI(title="PressClipper API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_ERROR_STATUS = (
    (ClientNotFoundError, 404),
    (AlertNotFoundError, 404),
    (RunNotFoundError, 404),
    (RunNotActiveError, 400),
    (ValidationError, 400),
)


class ClientPayload(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class AlertPayload(BaseModel):
    query: Optional[str] = None
    label: Optional[str] = None


@app.exception_handler(PressClipperError)
async def _domain_error(request: Request, exc: PressClipperError) -> JSONResponse:
    status_code = next((code for kind, code in _ERROR_STATUS if isinstance(exc, kind)), 500)
    if status_code == 500:
        logger.error("request_failed path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"error": exc.message})


def _org(runtime: ServiceRuntime, header_value: Optional[str]) -> str:
    text = str(header_value or "").strip()
    return text or runtime.settings.api.default_org_id


def _client_or_404(runtime: ServiceRuntime, client_id: str, org_id: str) -> Client:
    client = runtime.store.get_client(client_id)
    if client is None or client.org_id != org_id:
        raise ClientNotFoundError(client_id)
    return client


def _run_json(run: Optional[Run]) -> Optional[Dict[str, Any]]:
    return run.model_dump(mode="json") if run else None


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.get("/api/clients")
def list_clients(x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    org_id = _org(runtime, x_org_id)
    clients = []
    for client in runtime.store.list_clients(org_id):
        runs = runtime.store.list_runs(client.id)
        item = client.model_dump(mode="json")
        item["alerts_count"] = len(runtime.store.list_alerts(client.id))
        item["last_run"] = _run_json(runs[0] if runs else None)
        clients.append(item)
    return {"clients": clients}


@app.post("/api/clients", status_code=201)
def create_client(payload: ClientPayload, x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    if not str(payload.name or "").strip():
        raise ValidationError("Name is required")
    client = runtime.store.create_client(_org(runtime, x_org_id), payload.name, payload.description)
    logger.info("client_created client_id=%s", client.id)
    return {"client": client.model_dump(mode="json")}


@app.get("/api/clients/{client_id}")
def get_client(client_id: str, x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    client = _client_or_404(runtime, client_id, _org(runtime, x_org_id))
    runs = runtime.store.list_runs(client.id)
    item = client.model_dump(mode="json")
    item["alerts"] = [alert.model_dump(mode="json") for alert in runtime.store.list_alerts(client.id)]
    item["runs"] = [run.model_dump(mode="json") for run in runs]
    item["last_run"] = _run_json(runs[0] if runs else None)
    return {"client": item}


@app.delete("/api/clients/{client_id}")
def delete_client(client_id: str, x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    client = _client_or_404(runtime, client_id, _org(runtime, x_org_id))
    runtime.store.delete_client(client.id)
    logger.info("client_deleted client_id=%s", client.id)
    return {"success": True}


@app.post("/api/clients/{client_id}/alerts", status_code=201)
def create_alert(
    client_id: str,
    payload: AlertPayload,
    x_org_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    runtime = get_runtime()
    client = _client_or_404(runtime, client_id, _org(runtime, x_org_id))
    if not str(payload.query or "").strip():
        raise ValidationError("Search term is required")
    alert = runtime.store.create_alert(client.id, payload.query, payload.label)
    runtime.store.touch_client(client.id, datetime.now(timezone.utc))
    return {"alert": alert.model_dump(mode="json")}


@app.delete("/api/clients/{client_id}/alerts/{alert_id}")
def delete_alert(client_id: str, alert_id: str, x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    client = _client_or_404(runtime, client_id, _org(runtime, x_org_id))
    if not runtime.store.delete_alert(client.id, alert_id):
        raise AlertNotFoundError(alert_id)
    return {"success": True}


@app.post("/api/clients/{client_id}/refresh", status_code=201)
def refresh_client(client_id: str, x_org_id: Optional[str] = Header(default=None)) -> Any:
    runtime = get_runtime()
    ticket = runtime.coordinator.enqueue_refresh(client_id, org_id=_org(runtime, x_org_id))
    if not ticket.created:
        return JSONResponse(
            status_code=409,
            content={"error": "A run is already in progress", "run_id": ticket.run_id},
        )
    return {"run_id": ticket.run_id, "status": ticket.status.value}


@app.get("/api/clients/{client_id}/coverage")
def get_coverage(
    client_id: str,
    date_from: Optional[datetime] = Query(default=None, alias="from"),
    date_to: Optional[datetime] = Query(default=None, alias="to"),
    q: Optional[str] = None,
    min_score: Optional[int] = Query(default=None, alias="minScore"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    x_org_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    runtime = get_runtime()
    client = _client_or_404(runtime, client_id, _org(runtime, x_org_id))
    filters = CoverageFilter(
        date_from=date_from,
        date_to=date_to,
        text=q,
        min_score=min_score,
        limit=limit,
        offset=offset,
    )
    page = runtime.store.query_articles(client.id, filters)
    return page.model_dump(mode="json")


@app.get("/api/runs/{run_id}")
def get_run(run_id: str, x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    run = runtime.coordinator.get_run(run_id, org_id=_org(runtime, x_org_id))
    if run is None:
        raise RunNotFoundError(run_id)
    return {"run": _run_json(run)}


@app.post("/api/runs/{run_id}/cancel")
def cancel_run(run_id: str, x_org_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    runtime = get_runtime()
    run = runtime.coordinator.cancel_run(run_id, org_id=_org(runtime, x_org_id))
    return {"success": True, "run": _run_json(run)}


@app.post("/api/workers/runs/next")
def run_worker_next() -> Dict[str, Any]:
    runtime = get_runtime()
    outcome = runtime.worker.run_next()
    if outcome is None:
        return {"processed": False}
    return {
        "processed": True,
        "run_id": outcome.run_id,
        "status": outcome.status.value,
        "articles_upserted": outcome.articles_upserted,
        "error_message": outcome.error_message,
        "recorded": outcome.recorded,
    }

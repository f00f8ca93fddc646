"""CLI entrypoint for the coverage API, refresh worker and run inspection."""

from __future__ import annotations

import argparse
from datetime import datetime
import json
import logging
import sys
import threading
from typing import Any, Optional

from config import get_settings, validate_worker_settings
from core import CoverageFilter
from orchestrator import HttpRunStatusSource, RunStatusPoller
from utils import configure_library_logging
from utils.exceptions import PressClipperError, RunNotFoundError
from webapp.runtime import get_runtime


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def _datetime(text: str) -> Optional[datetime]:
    raw = str(text or "").strip()
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PressClipper coverage-refresh CLI")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--org-id", default="")
    sub = parser.add_subparsers(dest="command", required=True)

    add_client = sub.add_parser("add-client")
    add_client.add_argument("--name", required=True)
    add_client.add_argument("--description", default="")

    add_alert = sub.add_parser("add-alert")
    add_alert.add_argument("--client-id", required=True)
    add_alert.add_argument("--query", required=True)
    add_alert.add_argument("--label", default="")

    refresh = sub.add_parser("refresh")
    refresh.add_argument("--client-id", required=True)

    status = sub.add_parser("status")
    status.add_argument("--run-id", required=True)

    wait = sub.add_parser("wait")
    wait.add_argument("--run-id", required=True)
    wait.add_argument("--api-url", default="", help="poll a running API instead of the local store")
    wait.add_argument("--interval", type=float, default=None)
    wait.add_argument("--timeout", type=float, default=None)

    cancel = sub.add_parser("cancel")
    cancel.add_argument("--run-id", required=True)

    coverage = sub.add_parser("coverage")
    coverage.add_argument("--client-id", required=True)
    coverage.add_argument("--from", dest="date_from", default="")
    coverage.add_argument("--to", dest="date_to", default="")
    coverage.add_argument("--q", default="")
    coverage.add_argument("--min-score", type=int, default=None)
    coverage.add_argument("--limit", type=int, default=50)
    coverage.add_argument("--offset", type=int, default=0)

    sub.add_parser("worker-run-next")

    worker = sub.add_parser("worker")
    worker.add_argument("--max-iterations", type=int, default=None)

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="")
    serve.add_argument("--port", type=int, default=0)

    return parser


def _run_command(args: argparse.Namespace) -> None:
    settings = get_settings()
    runtime = get_runtime()
    org_id = str(args.org_id or "").strip() or settings.api.default_org_id

    if args.command == "add-client":
        client = runtime.store.create_client(org_id, args.name, args.description)
        _print({"client": client.model_dump(mode="json")})
        return

    if args.command == "add-alert":
        alert = runtime.store.create_alert(args.client_id, args.query, args.label)
        _print({"alert": alert.model_dump(mode="json")})
        return

    if args.command == "refresh":
        ticket = runtime.coordinator.enqueue_refresh(args.client_id, org_id=org_id)
        if not ticket.created:
            _print({"error": "A run is already in progress", "run_id": ticket.run_id})
            return
        _print({"run_id": ticket.run_id, "status": ticket.status.value})
        return

    if args.command == "status":
        run = runtime.coordinator.get_run(args.run_id, org_id=org_id)
        if run is None:
            raise RunNotFoundError(args.run_id)
        _print({"run": run.model_dump(mode="json")})
        return

    if args.command == "wait":
        interval = args.interval if args.interval is not None else settings.poller.interval
        timeout = args.timeout if args.timeout is not None else settings.poller.timeout
        source = None

        def fetch_run(run_id: str):
            if source is not None:
                return source(run_id)
            return runtime.coordinator.get_run(run_id, org_id=org_id)

        if str(args.api_url or "").strip():
            source = HttpRunStatusSource(args.api_url, org_id=org_id)
        try:
            run = RunStatusPoller(fetch_run, interval=interval, timeout=timeout).wait(args.run_id)
        finally:
            if source is not None:
                source.close()
        _print({"run": run.model_dump(mode="json")})
        return

    if args.command == "cancel":
        run = runtime.coordinator.cancel_run(args.run_id, org_id=org_id)
        _print({"success": True, "run": run.model_dump(mode="json")})
        return

    if args.command == "coverage":
        client = runtime.store.get_client(args.client_id)
        if client is None or client.org_id != org_id:
            _print({"error": f"Client not found: {args.client_id}"})
            return
        filters = CoverageFilter(
            date_from=_datetime(args.date_from),
            date_to=_datetime(args.date_to),
            text=args.q,
            min_score=args.min_score,
            limit=args.limit,
            offset=args.offset,
        )
        _print(runtime.store.query_articles(client.id, filters).model_dump(mode="json"))
        return

    if args.command == "worker-run-next":
        validate_worker_settings(settings)
        outcome = runtime.worker.run_next()
        if outcome is None:
            _print({"processed": False})
            return
        _print(
            {
                "processed": True,
                "run_id": outcome.run_id,
                "status": outcome.status.value,
                "articles_upserted": outcome.articles_upserted,
                "error_message": outcome.error_message,
            }
        )
        return

    if args.command == "worker":
        validate_worker_settings(settings)
        stop_event = threading.Event()
        try:
            processed = runtime.worker.run_forever(stop_event=stop_event, max_iterations=args.max_iterations)
        except KeyboardInterrupt:
            stop_event.set()
            processed = None
        _print({"stopped": True, "processed": processed})
        return

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "webapp.app:app",
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
        )


def main() -> None:
    args = _build_parser().parse_args()
    configure_library_logging(getattr(logging, str(args.log_level).upper(), logging.INFO))
    try:
        _run_command(args)
    except PressClipperError as exc:
        _print({"error": exc.message, "details": exc.details})
        sys.exit(1)


if __name__ == "__main__":
    main()

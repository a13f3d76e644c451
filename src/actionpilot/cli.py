"""Summary: Command-line interface for ActionPilot.

Importance: Provides a local-first entry point for ingestion, processing, and
the two-phase action protocol.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import json
import logging
import threading
from typing import Any, Sequence

import uvicorn

from actionpilot.api import create_app
from actionpilot.app import build_scheduler, build_services
from actionpilot.config import AppConfig
from actionpilot.errors import ActionPilotError
from actionpilot.ingestion import MockInboundSource


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="ActionPilot CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--with-jobs", action="store_true", help="Also run background jobs")

    ingest_mock = subparsers.add_parser("ingest-mock", help="Ingest rows from the mock fixture")
    ingest_mock.add_argument("--fixture", type=str, default=None)

    list_messages = subparsers.add_parser("list-messages", help="List recent messages")
    list_messages.add_argument("--limit", type=int, default=10)

    process_once = subparsers.add_parser("process-once", help="Run one processing cycle")
    process_once.add_argument("--limit", type=int, default=None)

    run_jobs = subparsers.add_parser("run-jobs", help="Run ingestion and processing timers")
    run_jobs.add_argument("--once", action="store_true", help="Tick every job once and exit")

    stats = subparsers.add_parser("stats", help="Show processing stats")
    stats.add_argument("--user-id", type=int, default=None)

    retry = subparsers.add_parser("retry", help="Reset failed messages for retry")
    retry.add_argument("--user-id", type=int, default=None)

    prepare = subparsers.add_parser("prepare", help="Prepare suggestions for a message")
    prepare.add_argument("message_id", type=int)
    prepare.add_argument("--action", type=str, default=None, help="Selected action hint")

    execute = subparsers.add_parser("execute", help="Execute an action for a message")
    execute.add_argument("message_id", type=int)
    execute.add_argument("action_type", type=str)
    execute.add_argument("--payload", type=str, default="{}", help="JSON payload")

    resolve = subparsers.add_parser("resolve-meeting", help="Resolve a meeting request")
    resolve.add_argument("text", type=str)
    resolve.add_argument("--timezone", type=str, default=None)

    detect = subparsers.add_parser("detect", help="Detect the request kind for text")
    detect.add_argument("text", type=str)
    detect.add_argument("--rules-only", action="store_true")

    audit = subparsers.add_parser("audit", help="Show execution audit rows")
    audit.add_argument("--message-id", type=int, default=None)
    audit.add_argument("--limit", type=int, default=20)
    return parser


def run_cli(argv: Sequence[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Pipeline errors print their structured payload and exit non-zero.
    Alternatives: Invoke services via the HTTP API.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    try:
        _dispatch(args, config)
    except ActionPilotError as exc:
        _print_json(exc.to_payload())
        raise SystemExit(1) from exc


def _dispatch(args: argparse.Namespace, config: AppConfig) -> None:
    if args.command == "serve":
        services = build_services(config)
        app = create_app(config, services)
        handle = build_scheduler(services).start() if args.with_jobs else None
        try:
            uvicorn.run(app, host=args.host or config.api_host, port=args.port or config.api_port)
        finally:
            if handle is not None:
                handle.stop()
        return

    services = build_services(config)

    if args.command == "ingest-mock":
        source = MockInboundSource(args.fixture or config.mock_fixture_path)
        ids = services.ingestion.ingest_rows(source.fetch())
        print(f"Ingested {len(ids)} rows from mock fixture.")
        return

    if args.command == "list-messages":
        for message in services.store.list_messages(args.limit, user_id=services.user_id):
            flags = "A" if message.action_required else "-"
            flags += "X" if message.actioned else "-"
            print(
                f"#{message.id} [{message.processing_state}:{message.attempts}] {flags} "
                f"{message.subject} ({message.sender})"
            )
        return

    if args.command == "process-once":
        report = services.cycle.run(args.limit)
        print(f"Processed {report.processed}/{report.selected} messages, {report.failed} failed.")
        return

    if args.command == "run-jobs":
        scheduler = build_scheduler(services)
        if args.once:
            ran = scheduler.tick()
            print(f"Ran jobs: {', '.join(ran) or 'none'}")
            return
        handle = scheduler.start()
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            print("Stopping jobs.")
        finally:
            handle.stop()
        return

    if args.command == "stats":
        _print_json(services.controller.stats(args.user_id).to_dict())
        return

    if args.command == "retry":
        count = services.controller.reset_for_retry(args.user_id)
        print(f"Reset {count} messages for retry.")
        return

    if args.command == "prepare":
        _print_json(services.actions.prepare(args.message_id, args.action, user_id=services.user_id))
        return

    if args.command == "execute":
        try:
            payload = json.loads(args.payload)
        except json.JSONDecodeError as exc:
            raise SystemExit(f"--payload is not valid JSON: {exc}") from exc
        result = services.actions.execute(
            args.message_id, args.action_type, payload, user_id=services.user_id
        )
        _print_json(result.to_dict())
        return

    if args.command == "resolve-meeting":
        spec = services.resolver.resolve(
            args.text, timezone_name=args.timezone, user_id=services.user_id
        )
        _print_json(spec.to_payload())
        return

    if args.command == "detect":
        options = {"use_llm": False} if args.rules_only else None
        print(services.engine.detect_kind(args.text, options=options, user_id=services.user_id))
        return

    if args.command == "audit":
        for record in services.store.list_execution_audits(
            message_id=args.message_id, user_id=services.user_id, limit=args.limit
        ):
            print(
                f"{record.created_at} #{record.message_id} {record.action_type} "
                f"{record.state} {record.error or ''}".rstrip()
            )
        return


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


if __name__ == "__main__":
    run_cli()

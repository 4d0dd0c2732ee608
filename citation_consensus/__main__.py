"""CLI entry point: python -m citation_consensus <command>"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from citation_consensus.agents.base import AgentCaller
from citation_consensus.config import Settings, get_settings
from citation_consensus.contracts import (
    CheckDocument,
    CheckStatus,
    EmptyCitationSetError,
    JobNotFoundError,
    JobStatus,
)
from citation_consensus.deliberate.escalation import EscalationEvaluator
from citation_consensus.deliberate.panel import PanelEvaluator
from citation_consensus.event_log.writer import EventLog
from citation_consensus.jobs.queue import JobQueue
from citation_consensus.jobs.store import JsonFileStore
from citation_consensus.jobs.worker import QueueWorker
from citation_consensus.reporting.consistency import analyze_consistency, load_run
from citation_consensus.scoring.resolution import risk_statistics


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="citation-consensus",
        description="Multi-agent consensus validation of legal citations",
    )
    parser.add_argument(
        "--store",
        type=str,
        default=None,
        help="Path to the JSON pipeline store (default: STORE_PATH)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Validate every citation in a document JSON")
    validate.add_argument("document", type=str, help="Document JSON with document.citations")
    validate.add_argument(
        "--check-id",
        type=str,
        default=None,
        help="Document-check id (default: the file's id field, else its stem)",
    )

    sub.add_parser("work", help="Drain whatever is pending in the queue")

    status = sub.add_parser("status", help="Show progress of a validation job")
    status.add_argument("job_id", type=str)

    retry = sub.add_parser("retry", help="Re-enqueue failed citations of a job and drain")
    retry.add_argument("job_id", type=str)
    retry.add_argument(
        "--no-drain",
        action="store_true",
        help="Only re-enqueue; do not process",
    )

    consistency = sub.add_parser("consistency", help="Compare repeated runs of one document")
    consistency.add_argument("runs", type=str, nargs="+", help="Completed run JSON files")
    consistency.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write the report here instead of stdout",
    )

    return parser.parse_args(argv)


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"ERROR: cannot read {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _emit(payload: Any, output: str | None = None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
        print(f"Report saved to: {output}", file=sys.stderr)
    else:
        print(text)


def _require_live(settings: Settings) -> None:
    errors = settings.validate()
    if errors:
        for err in errors:
            print(f"ERROR: {err}", file=sys.stderr)
        sys.exit(1)
    for warn in settings.warnings():
        print(f"WARNING: {warn}", file=sys.stderr)


def build_worker(settings: Settings, queue: JobQueue) -> QueueWorker:
    caller = AgentCaller.from_settings(settings)
    return QueueWorker(
        queue,
        PanelEvaluator(caller, model=settings.tier2_model),
        EscalationEvaluator(caller, model=settings.tier3_model),
        batch_size=settings.worker_batch_size,
        run_log_dir=settings.run_log_dir,
    )


async def _report(queue: JobQueue, job_id: str, settings: Settings) -> dict[str, Any]:
    report = dict(await queue.job_report(job_id))
    check = await queue.store.get_check(report["check_id"])
    if check is not None:
        report["risk_statistics"] = risk_statistics(check["document"].get("citations") or [])
    if settings.run_log_dir:
        event_log = EventLog(settings.run_log_dir, job_id)
        if event_log.path.exists():
            report["events"] = event_log.summary()
    return report


async def cmd_validate(args: argparse.Namespace, settings: Settings, queue: JobQueue) -> int:
    data = _read_json(args.document)
    document = data.get("document", data) if isinstance(data, dict) else {}
    check_id = args.check_id or (data.get("id") if isinstance(data, dict) else None)
    check_id = check_id or Path(args.document).stem

    if await queue.store.get_check(check_id) is None:
        await queue.store.save_check(
            CheckDocument(
                id=check_id,
                status=CheckStatus.CITATIONS_IDENTIFIED.value,
                document=document,
            )
        )

    try:
        job_id = await queue.create_validation_job(check_id, document.get("citations") or [])
    except EmptyCitationSetError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"Job {job_id} for check {check_id}", file=sys.stderr)
    await build_worker(settings, queue).drain()
    report = await _report(queue, job_id, settings)
    _emit(report)
    return 1 if report["status"] == JobStatus.FAILED.value else 0


async def cmd_work(args: argparse.Namespace, settings: Settings, queue: JobQueue) -> int:
    batches = await build_worker(settings, queue).drain()
    processed = sum(b["processed"] for b in batches)
    print(f"Processed {processed} items in {len(batches)} batches", file=sys.stderr)
    return 0


async def cmd_status(args: argparse.Namespace, settings: Settings, queue: JobQueue) -> int:
    try:
        _emit(await _report(queue, args.job_id, settings))
    except JobNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


async def cmd_retry(args: argparse.Namespace, settings: Settings, queue: JobQueue) -> int:
    try:
        count = await queue.retry_unvalidated(args.job_id)
    except JobNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    print(f"Re-enqueued {count} items", file=sys.stderr)
    if count and not args.no_drain:
        await build_worker(settings, queue).drain()
    _emit(await _report(queue, args.job_id, settings))
    return 0


def cmd_consistency(args: argparse.Namespace) -> int:
    runs = [load_run(_read_json(path), number) for number, path in enumerate(args.runs, 1)]
    _emit(analyze_consistency(runs), args.output)
    return 0


_LIVE_COMMANDS = {"validate", "work", "retry"}


async def run(args: argparse.Namespace, settings: Settings) -> int:
    if args.command in _LIVE_COMMANDS:
        _require_live(settings)

    store = JsonFileStore(args.store or settings.store_path)
    queue = JobQueue(store, max_item_retries=settings.max_item_retries)

    handlers = {
        "validate": cmd_validate,
        "work": cmd_work,
        "status": cmd_status,
        "retry": cmd_retry,
    }
    return await handlers[args.command](args, settings, queue)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "consistency":
        sys.exit(cmd_consistency(args))
    sys.exit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()

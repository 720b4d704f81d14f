"""CLI entrypoint: validate a flow file or execute it in-process."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flowpilot import __version__
from flowpilot.automation.config import AutomationSettings
from flowpilot.automation.logging import configure_logging
from flowpilot.automation.storage import RunStore
from flowpilot.automation.workflow.actions import build_message_sender
from flowpilot.automation.workflow.engine import ExecutionEngine
from flowpilot.automation.workflow.events import TriggerPayload, TriggerType
from flowpilot.automation.workflow.models import ExecutionHistory, Flow, RunStatus
from flowpilot.automation.workflow.scheduler import AsyncioScheduler
from flowpilot.automation.workflow.validator import validate_flow

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowpilot",
        description="Validate and run marketing-automation flows",
    )
    parser.add_argument("--version", action="version", version=f"flowpilot {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check a flow file for structural errors")
    validate.add_argument("flow_file", type=Path, help="Path to a flow JSON document")

    run = subparsers.add_parser("run", help="Execute a flow once and print its audit log")
    run.add_argument("flow_file", type=Path, help="Path to a flow JSON document")
    run.add_argument(
        "--trigger-type",
        default=TriggerType.NEW_ORDER.value,
        choices=[t.value for t in TriggerType],
        help="Business event that triggers the run",
    )
    run.add_argument(
        "--context",
        default="{}",
        help='Trigger context as a JSON object, e.g. \'{"order": {"total": 120}}\'',
    )
    run.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up waiting after this many seconds (default: wait for delays)",
    )
    run.add_argument(
        "--force",
        action="store_true",
        help="Run even if validation reports errors",
    )
    return parser


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _print_run(run: ExecutionHistory) -> None:
    for entry in run.logs:
        print(f"{entry.timestamp.isoformat()} [{entry.level.value}] {entry.message}")
    print(f"Run {run.id}: {run.status.value}" + (f" ({run.error})" if run.error else ""))


async def _execute(
    flow: Flow, payload: TriggerPayload, settings: AutomationSettings, timeout: float | None
) -> ExecutionHistory:
    scheduler = AsyncioScheduler()
    sender = build_message_sender(settings)
    engine = ExecutionEngine(run_store=RunStore(), scheduler=scheduler, sender=sender)
    run_id = await engine.start_run(flow, payload)
    try:
        return await engine.wait_for_run(run_id, timeout)
    except TimeoutError:
        engine.cancel_run(run_id)
        return await engine.wait_for_run(run_id)
    finally:
        await scheduler.shutdown()
        close = getattr(sender, "close", None)
        if close is not None:
            close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = AutomationSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        raw = _load_json(args.flow_file)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read flow file {args.flow_file}: {e}", file=sys.stderr)
        return 2

    result = validate_flow(raw)

    if args.command == "validate":
        print(json.dumps(result.to_json(), indent=2, ensure_ascii=False))
        return 0 if result.valid else 1

    if args.command == "run":
        if not result.valid and not args.force:
            print(json.dumps(result.to_json(), indent=2, ensure_ascii=False))
            print("Flow has validation errors; use --force to run anyway.", file=sys.stderr)
            return 1
        try:
            flow = Flow.model_validate(raw)
            payload = TriggerPayload(type=args.trigger_type, context=json.loads(args.context))
        except (ValidationError, json.JSONDecodeError) as e:
            print(f"Invalid input: {e}", file=sys.stderr)
            return 2

        run = asyncio.run(_execute(flow, payload, settings, args.timeout))
        _print_run(run)
        return 0 if run.status is RunStatus.COMPLETED else 1

    parser.error(f"Unknown command: {args.command}")
    return 2

"""
Letterflow command line

Usage:
    letterflow serve                         # API plus background workers
    letterflow run --max-tasks 3 [--dry-run] # one batch in the foreground
    letterflow run --task-id 12345           # one named CRM task
    letterflow trigger --max-tasks 3         # queue a batch for the trigger monitor
    letterflow health                        # print queue health as JSON

``--data-dir`` overrides WORKFLOW_DATA_ROOT for every command.
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="letterflow", description="Outreach letter workflow")
    parser.add_argument("--data-dir", type=str, default=None, help="Workflow data root")
    parser.add_argument("--env-file", type=str, default=".env", help="dotenv file to load")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--no-workers", action="store_true", help="Skip watchers and trigger monitor")

    run = commands.add_parser("run", help="Process tasks once and exit")
    run.add_argument("--max-tasks", type=int, default=1, help="Tasks to process (default: 1)")
    run.add_argument("--dry-run", action="store_true", help="List tasks without processing")
    run.add_argument("--task-id", type=str, default=None, help="Process this CRM task only")

    trigger = commands.add_parser("trigger", help="Queue a batch trigger")
    trigger.add_argument("--max-tasks", type=int, default=1)
    trigger.add_argument("--dry-run", action="store_true")
    trigger.add_argument("--requested-by", type=int, default=1)

    commands.add_parser("health", help="Print approval queue health")
    return parser


def _configure_environment(args: argparse.Namespace) -> None:
    """Apply overrides before any settings are read"""
    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)
    if args.data_dir:
        os.environ["WORKFLOW_DATA_ROOT"] = str(Path(args.data_dir).resolve())
    if args.command == "serve" and args.no_workers:
        os.environ["RUN_BACKGROUND_WORKERS"] = "false"


async def _run(args: argparse.Namespace) -> int:
    from letterflow.dependencies import build_orchestrator, get_queue
    from letterflow.models.approval import WorkflowTrigger

    queue = get_queue()
    orchestrator = await build_orchestrator(queue)
    if args.task_id:
        print(await orchestrator.process_task_by_id(args.task_id))
        return 0
    finished = await orchestrator.process_workflow(
        WorkflowTrigger(max_tasks=args.max_tasks, dry_run=args.dry_run)
    )
    print(finished.result)
    return 0


def _trigger(args: argparse.Namespace) -> int:
    from letterflow.dependencies import get_queue

    trigger_id = get_queue().create_trigger(args.requested_by, args.max_tasks, args.dry_run)
    print(trigger_id)
    return 0


def _health(args: argparse.Namespace) -> int:
    from letterflow.dependencies import get_queue
    from letterflow.models.approval import HealthStatus

    result = get_queue().health_check()
    print(result.model_dump_json(indent=2))
    return 0 if result.status == HealthStatus.HEALTHY else 1


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from letterflow.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "letterflow.main:app",
        host=args.host or settings.fastapi_host,
        port=args.port or settings.fastapi_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_environment(args)

    from letterflow.errors import LetterflowError

    try:
        if args.command == "serve":
            return _serve(args)
        if args.command == "run":
            return asyncio.run(_run(args))
        if args.command == "trigger":
            return _trigger(args)
        return _health(args)
    except LetterflowError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

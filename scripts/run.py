#!/usr/bin/env python3
"""
Questlog - command line entry point.

Usage:
    # Create an empty progress document
    python scripts/run.py init --user u1

    # Complete a task (cascades to its alternatives)
    python scripts/run.py task --user u1 TASK_ID completed

    # Several tasks in one transaction
    python scripts/run.py tasks --user u1 A:completed B:failed

    # Objective progress
    python scripts/run.py objective --user u1 OBJ_ID --count 3

    # Read back
    python scripts/run.py status --user u1 TASK_ID
    python scripts/run.py progress --user u1 --mode pve
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.table import Table

# Setup paths
BASE_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BASE_DIR / "src"))

load_dotenv(BASE_DIR / ".env", override=True)

console = Console()


def setup_logging(
    log_dir: Path,
    level: str = "INFO",
    json_mode: bool = False,
    log_format: str = "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
) -> None:
    """Configure application logging.

    Args:
        log_dir: Directory for log files.
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_mode: If True, output structured JSON logs.
        log_format: Format string for plain-text logs.
    """
    log_dir.mkdir(exist_ok=True)
    log_file = log_dir / "questlog.log"

    handlers = [
        logging.StreamHandler(),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ]

    if json_mode:
        from questlog.core.tracing import get_request_id

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                log_entry = {
                    "timestamp": self.formatTime(record),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
                request_id = get_request_id()
                if request_id:
                    log_entry["request_id"] = request_id
                if record.exc_info:
                    log_entry["exception"] = self.formatException(record.exc_info)
                return json.dumps(log_entry)

        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(log_format)

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
    )

    logger = logging.getLogger("questlog")
    logger.debug(f"Logging to: {log_file}")


def parse_task_pairs(pairs: list[str]) -> list[dict[str, str]]:
    """Turn ``TASK_ID:state`` arguments into task updates."""
    updates = []
    for pair in pairs:
        task_id, sep, state = pair.rpartition(":")
        if not sep or not task_id:
            raise argparse.ArgumentTypeError(f"Expected TASK_ID:state, got {pair!r}")
        updates.append({"id": task_id, "state": state})
    return updates


def print_update_result(result) -> None:
    console.print(
        f"[green]Committed[/green] at {result.commit.timestamp} "
        f"({result.commit.attempts} attempt(s), {result.commit.fields} field(s))"
    )

    table = Table(show_header=True, box=box.SIMPLE, padding=(0, 1))
    table.add_column("Task")
    table.add_column("State")
    table.add_column("Alternatives updated")
    table.add_column("Unlocked")
    table.add_column("Error", style="red")

    for outcome in result.outcomes:
        if outcome.skipped:
            alternatives = "-"
        else:
            alternatives = ", ".join(outcome.alternatives_updated) or "none"
        table.add_row(
            outcome.task_id,
            outcome.state.value,
            alternatives,
            ", ".join(outcome.unlocked) or "none",
            outcome.error or ", ".join(outcome.failed_alternatives),
        )
    console.print(table)


def print_progress(progress) -> None:
    console.print(
        f"[bold]{progress.display_name}[/bold] level {progress.player_level}, "
        f"{progress.pmc_faction}, edition {progress.game_edition}"
    )

    table = Table(show_header=True, box=box.SIMPLE, padding=(0, 1))
    table.add_column("Task")
    table.add_column("Complete")
    table.add_column("Failed")
    table.add_column("Invalid")
    for item in sorted(progress.tasks_progress, key=lambda i: i.id):
        table.add_row(item.id, str(item.complete), str(item.failed), str(item.invalid))
    console.print(table)

    if progress.objectives_progress:
        objectives = Table(show_header=True, box=box.SIMPLE, padding=(0, 1))
        objectives.add_column("Objective")
        objectives.add_column("Complete")
        objectives.add_column("Count")
        objectives.add_column("Invalid")
        for item in sorted(progress.objectives_progress, key=lambda i: i.id):
            count = "" if item.count is None else str(item.count)
            objectives.add_row(item.id, str(item.complete), count, str(item.invalid))
        console.print(objectives)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Questlog task progress tool")
    parser.add_argument(
        "--config",
        type=Path,
        default=BASE_DIR / "config.yaml",
        help="Path to config.yaml (default: ./config.yaml)",
    )
    parser.add_argument("--user", "-u", required=True, help="User id")
    parser.add_argument(
        "--mode",
        "-m",
        default="pvp",
        choices=["pvp", "pve"],
        help="Game mode (default: pvp)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON instead of tables",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Create an empty progress document")
    init.add_argument("--faction", default="USEC", help="PMC faction (default: USEC)")

    task = commands.add_parser("task", help="Set one task's state")
    task.add_argument("task_id")
    task.add_argument("state", help="completed, failed or uncompleted")

    tasks = commands.add_parser("tasks", help="Set several task states in one transaction")
    tasks.add_argument("pairs", nargs="+", metavar="TASK_ID:state")

    objective = commands.add_parser("objective", help="Update an objective")
    objective.add_argument("objective_id")
    objective.add_argument("--state", help="completed or uncompleted")
    objective.add_argument("--count", type=int, help="Progress count")

    status = commands.add_parser("status", help="Show one task's stored record")
    status.add_argument("task_id")

    commands.add_parser("progress", help="Show formatted progress")

    return parser


async def execute(args: argparse.Namespace, app) -> None:
    """Run one sub-command against an initialized application."""
    from questlog.core.errors import ApiError

    progress = app.progress

    try:
        if args.command == "init":
            await app.create_progress(args.user, args.faction)
            console.print(f"[green]Progress ready for {args.user}[/green]")

        elif args.command == "task":
            result = await progress.update_single_task(
                args.user, args.task_id, args.state, args.mode
            )
            print_update_result(result)

        elif args.command == "tasks":
            result = await progress.update_multiple_tasks(
                args.user, parse_task_pairs(args.pairs), args.mode
            )
            print_update_result(result)

        elif args.command == "objective":
            update = {"state": args.state, "count": args.count}
            update = {k: v for k, v in update.items() if v is not None}
            await progress.update_task_objective(args.user, args.objective_id, update, args.mode)
            console.print(f"[green]Objective {args.objective_id} updated[/green]")

        elif args.command == "status":
            record = await progress.get_task_status(args.user, args.task_id, args.mode)
            if record is None:
                console.print(f"No record for task {args.task_id}")
            elif args.json:
                console.print_json(json.dumps(record.to_dict()))
            else:
                console.print(f"{args.task_id}: {record.status.value} (timestamp {record.timestamp})")

        elif args.command == "progress":
            formatted = await progress.get_user_progress(args.user, args.mode)
            if args.json:
                console.print_json(json.dumps(formatted.to_dict()))
            else:
                print_progress(formatted)

    except ApiError as e:
        if args.json:
            console.print_json(json.dumps(e.to_response()))
        else:
            console.print(f"[red]Error {e.status_code}:[/red] {e.message}")
        raise SystemExit(1) from e


async def main() -> None:
    """Main entry point for questlog."""
    from questlog.application import QuestlogApplication
    from questlog.config import QuestlogConfig

    args = build_parser().parse_args()

    try:
        config = QuestlogConfig.load(args.config)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        log_dir=BASE_DIR / "logs",
        level=config.logging.level,
        json_mode=config.logging.json_mode,
        log_format=config.logging.format,
    )

    logger = logging.getLogger("questlog")
    app = QuestlogApplication(config)

    try:
        await app.initialize()
        await execute(args, app)
    except argparse.ArgumentTypeError as e:
        print(f"Argument error: {e}", file=sys.stderr)
        sys.exit(2)
    except RuntimeError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        await app.shutdown()


if __name__ == "__main__":
    asyncio.run(main())

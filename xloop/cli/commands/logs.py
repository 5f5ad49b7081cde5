"""xloop logs command."""

from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from xloop.config.loader import load_config
from xloop.core.exceptions import XLoopError, format_error
from xloop.tracking.activity_logger import (
    ActivityEvent,
    ActivityLogger,
    EventType,
    generate_session_id,
)

console = Console()

EVENT_STYLES = {
    EventType.PHASE_FAILED: "red",
    EventType.ERROR: "red",
    EventType.PHASE_RETRY: "yellow",
    EventType.MARKER_MISSING: "yellow",
    EventType.TASK_COMPLETED: "green",
}


@click.command()
@click.argument("feature")
@click.option("--task", "task_id", help="Only show events for this task")
@click.option(
    "--lines",
    "-n",
    type=click.IntRange(min=1),
    default=50,
    show_default=True,
    help="Number of events to show",
)
@click.pass_context
def logs_command(
    ctx: click.Context, feature: str, task_id: Optional[str], lines: int
) -> None:
    """View the activity log of a feature's runs.

    Shows the most recent events: phases started and finished, retries,
    failures with their classification, and completed tasks.

    Examples:
        xloop logs auth               # Last 50 events for the auth feature
        xloop logs auth --task task-2 # Events for one task
        xloop logs auth -n 200
    """
    obj = ctx.obj or {}
    project_dir = Path.cwd()

    try:
        config = load_config(project_dir=project_dir, config_path=obj.get("config"))
    except XLoopError as e:
        console.print(format_error(str(e)), markup=False, highlight=False)
        ctx.exit(1)
        return

    logs_dir = config.get_log_dir(project_dir)
    if not logs_dir.is_dir():
        console.print("[yellow]No logs directory found[/yellow]")
        console.print("No tasks have been run yet")
        return

    logger = ActivityLogger(generate_session_id(), logs_dir, feature)
    if not logger.log_file.exists():
        console.print(f"[yellow]No activity log for feature '{feature}'[/yellow]")
        return

    if task_id:
        events = logger.get_task_events(task_id)[-lines:]
        title = f"Activity for {feature} / {task_id}"
    else:
        events = logger.get_recent_events(lines)
        title = f"Recent activity for {feature}"

    if not events:
        console.print("[yellow]No log entries found[/yellow]")
        return

    console.print(_events_table(title, events))


def _events_table(title: str, events: List[ActivityEvent]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Event")
    table.add_column("Task", style="cyan")
    table.add_column("Phase")
    table.add_column("Message")

    for event in events:
        table.add_row(
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            Text(event.event_type.value, style=EVENT_STYLES.get(event.event_type, "")),
            event.task_id or "-",
            event.phase or "-",
            Text(event.message),
        )
    return table

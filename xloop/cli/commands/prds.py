"""xloop prds command."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from xloop.core.lifecycle import LifecycleState
from xloop.core.plan_store import PlanStore

console = Console()

STATE_STYLES = {
    LifecycleState.NOT_STARTED: "dim",
    LifecycleState.IN_PROGRESS: "yellow",
    LifecycleState.COMPLETED: "green",
}


@click.command()
def prds_command() -> None:
    """List PRDs and the status of their task lists.

    Examples:
        xloop prds
    """
    store = PlanStore(Path.cwd())
    prds = store.list_prds()

    if not prds:
        console.print("[yellow]No PRDs found in .plans/[/yellow]")
        return

    table = Table(title="PRDs", show_header=True, header_style="bold")
    table.add_column("PRD", style="cyan")
    table.add_column("Task File")
    table.add_column("Status")
    table.add_column("Progress", justify="right")

    for prd in prds:
        if prd.error:
            status = "[red]invalid task file[/red]"
        else:
            style = STATE_STYLES[prd.status.state]
            status = f"[{style}]{prd.status.state.label}[/{style}]"
        progress = f"{prd.status.completed}/{prd.status.total}" if prd.task_file else "-"
        table.add_row(prd.filename, prd.task_file or "-", status, progress)

    console.print(table)

"""xloop status command."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from xloop.core.plan_store import PlanStore

console = Console()


@click.command()
def status_command() -> None:
    """Show task files that still have work left.

    For each incomplete task file, shows progress and the task that the
    next iteration would pick.

    Examples:
        xloop status
    """
    store = PlanStore(Path.cwd())

    if not store.plans_dir.exists():
        console.print("[yellow]No .plans directory found[/yellow]")
        console.print("Run 'xloop init' to initialize xloop in this project")
        return

    statuses = store.list_incomplete_task_files()
    if not statuses:
        console.print("[green]✓[/green] No incomplete task files")
        return

    table = Table(title="Incomplete Task Files", show_header=True, header_style="bold")
    table.add_column("Feature", style="cyan")
    table.add_column("Progress", justify="right")
    table.add_column("Next Task")

    for status in statuses:
        if status.error:
            progress = "[red]invalid[/red]"
            next_task = Text(status.error.splitlines()[0], style="red")
        else:
            progress = f"{status.status.completed}/{status.status.total}"
            if status.next_task:
                next_task = Text(f"{status.next_task.id}: {status.next_task.title}")
            else:
                next_task = "[yellow]waiting for dependencies[/yellow]"
        table.add_row(status.feature, progress, next_task)

    console.print(table)

"""xloop prune command."""

from pathlib import Path

import click
from rich.console import Console

from xloop.core.archiver import prune_completed
from xloop.core.plan_store import PlanStore

console = Console()


@click.command()
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be archived without moving anything",
)
@click.pass_context
def prune_command(ctx: click.Context, dry_run: bool) -> None:
    """Move completed features to .plans/archive/.

    A feature is completed when every task in its task file is completed.
    Its PRD, task file and progress log are moved together.

    Examples:
        xloop prune --dry-run   # Preview
        xloop prune             # Archive
    """
    store = PlanStore(Path.cwd())
    result = prune_completed(store, dry_run=dry_run)

    if dry_run:
        if not result.would_archive:
            console.print("No finished PRDs to archive")
            return
        for feature in result.would_archive:
            console.print(f"Would archive: {feature}", highlight=False)
        console.print(f"\n{len(result.would_archive)} finished PRDs would be archived")
        return

    for feature in result.archived:
        console.print(f"[green]✓[/green] Archived: {feature}", highlight=False)
    for feature, error in result.failed:
        console.print(f"[red]✗[/red] Failed to archive {feature}:", highlight=False)
        console.print(error, markup=False, highlight=False)

    if result.archived:
        console.print(f"\nMoved {len(result.archived)} finished PRDs to archive")
    elif not result.failed:
        console.print("No finished PRDs to archive")

    if not result.success:
        ctx.exit(1)

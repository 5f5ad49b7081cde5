"""Main CLI entry point for xloop."""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from xloop.cli.commands.do import do_command
from xloop.cli.commands.init import init_command
from xloop.cli.commands.logs import logs_command
from xloop.cli.commands.prds import prds_command
from xloop.cli.commands.prune import prune_command
from xloop.cli.commands.status import status_command
from xloop.config.models import VALID_AGENTS
from xloop.core.exceptions import XLoopError, format_error

console = Console()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--agent",
    "-a",
    type=click.Choice(VALID_AGENTS),
    help="Agent CLI to run (overrides default_agent in config)",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.pass_context
def cli(
    ctx: click.Context, verbose: bool, agent: Optional[str], config: Optional[Path]
) -> None:
    """xloop: run coding agents through a task list, one task per iteration.

    Each iteration picks the next task whose dependencies are done and runs
    the agent through implement, review and finalize phases.

    \b
    Examples:
        xloop init                               # Create .plans/ and config
        xloop do tasks-auth.yml --iterations 5   # Work through up to 5 tasks
        xloop do auth -n 3 --skip review         # Skip the review phase
        xloop status                             # Show incomplete task files
        xloop prds                               # List PRDs and their status
        xloop prune --dry-run                    # Preview archival of finished work
        xloop logs auth --task task-2            # Show activity for one task
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["agent"] = agent
    ctx.obj["config"] = config

    if verbose:
        console.print("[dim]xloop starting with verbose output enabled[/dim]")


cli.add_command(init_command, name="init")
cli.add_command(do_command, name="do")
cli.add_command(status_command, name="status")
cli.add_command(prds_command, name="prds")
cli.add_command(prune_command, name="prune")
cli.add_command(logs_command, name="logs")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except XLoopError as e:
        console.print(format_error(str(e)), markup=False, highlight=False)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()

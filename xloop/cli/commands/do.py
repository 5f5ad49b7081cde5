"""xloop do command."""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from xloop.config.loader import load_config
from xloop.core.exceptions import XLoopError, format_error
from xloop.orchestrator.iteration_controller import run_iterations

console = Console()


@click.command()
@click.argument("tasks_file")
@click.option(
    "--iterations",
    "-n",
    type=click.IntRange(min=1),
    required=True,
    help="Maximum number of iterations (one task per iteration)",
)
@click.option(
    "--skip",
    type=click.Choice(["review"]),
    help="Skip a phase (only review can be skipped)",
)
@click.pass_context
def do_command(
    ctx: click.Context, tasks_file: str, iterations: int, skip: Optional[str]
) -> None:
    """Work through a task file with a coding agent.

    TASKS_FILE is a feature name, a task file name in .plans/ or a path.
    Each iteration runs the next eligible task through the implement,
    review and finalize phases. The run stops early when every task is
    done or the remaining tasks are waiting for dependencies.

    Examples:
        xloop do tasks-auth.yml --iterations 5
        xloop do auth -n 1 --skip review
    """
    obj = ctx.obj or {}
    project_dir = Path.cwd()

    try:
        config = load_config(project_dir=project_dir, config_path=obj.get("config"))
        result = run_iterations(
            tasks_file,
            iterations,
            agent=obj.get("agent"),
            project_dir=project_dir,
            config=config,
            skip_review=skip == "review",
            verbose=obj.get("verbose", False),
            console=console,
        )
    except XLoopError as e:
        console.print(format_error(str(e)), markup=False, highlight=False)
        ctx.exit(1)
        return

    if not result.success:
        console.print(
            format_error("Run aborted", result.cause), markup=False, highlight=False
        )
        ctx.exit(result.exit_code)

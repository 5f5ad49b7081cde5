"""xloop init command."""

from pathlib import Path

import click
from rich.console import Console

from xloop.config.loader import create_default_config, get_project_config_path, save_config
from xloop.core.plan_store import PlanStore

console = Console()

GITIGNORE_CONTENT = """# xloop generated files
logs/
*.tmp
"""


@click.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite the existing configuration",
)
def init_command(force: bool) -> None:
    """Initialize xloop in the current project.

    Creates a .plans directory with a default xloop.config.yaml and a logs
    directory for activity logs.

    Examples:
        xloop init                # Initialize with default settings
        xloop init --force        # Rewrite the default configuration
    """
    project_root = Path.cwd()
    store = PlanStore(project_root)
    config_path = get_project_config_path(project_root)

    if config_path.exists() and not force:
        console.print(
            f"[yellow]xloop already initialized in {project_root}[/yellow]\n"
            "Use --force to reinitialize"
        )
        return

    try:
        store.ensure_plans_dir()
        config = create_default_config()
        save_config(config, config_path)
        config.get_log_dir(project_root).mkdir(parents=True, exist_ok=True)

        gitignore_path = store.plans_dir / ".gitignore"
        if not gitignore_path.exists() or force:
            gitignore_path.write_text(GITIGNORE_CONTENT, encoding="utf-8")

    except OSError as e:
        console.print(f"[red]Failed to initialize xloop:[/red] {e}")
        raise click.ClickException(f"Initialization failed: {e}")

    console.print(f"[green]✓[/green] xloop initialized in {project_root}")
    console.print(f"[dim]Configuration:[/dim] {config_path}")
    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Review and customize .plans/xloop.config.yaml")
    console.print("2. Add a PRD (.plans/prd-<feature>.md) and its task list (.plans/tasks-<feature>.yml)")
    console.print("3. Start working: xloop do tasks-<feature>.yml --iterations 5")

"""
TaskLoop CLI - Run the task loop from a terminal.

Run `taskloop run` with OBJECTIVE set (in the environment, a .env file or
.taskloop/config.yaml). The loop runs until interrupted with Ctrl+C.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel

from taskloop import __version__
from taskloop.core.loop import IterationResult, build_loop
from taskloop.core.tasks import Task
from taskloop.errors import TaskLoopError
from taskloop.rag.vectorstore import create_vector_store
from taskloop.validation.config import Config, list_env_keys

console = Console()
logger = logging.getLogger("taskloop")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=verbose)],
        force=True,
    )
    # Client libraries are chatty at DEBUG
    for name in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _load_config(config_path: Optional[Path]) -> Config:
    load_dotenv()
    return Config.load(config_path)


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    sys.exit(1)


def _on_task(task: Optional[Task]) -> str:
    return f" on task {task.id} ({task.name})" if task else ""


def print_iteration(result: IterationResult) -> None:
    """Print the task list, the task just run and its result."""
    if result.error:
        where = escape(_on_task(result.task))
        console.print(f"[red]Iteration {result.iteration} failed{where}:[/red] {escape(result.error)}")
        return
    if result.idle:
        return

    console.print("\n[bold magenta]*****TASK LIST*****[/bold magenta]")
    for task in result.task_list:
        console.print(f"{task.id}: {task.name}", markup=False)

    console.print("\n[bold green]*****NEXT TASK*****[/bold green]")
    console.print(f"{result.task.id}: {result.task.name}", markup=False)

    console.print("\n[bold yellow]*****TASK RESULT*****[/bold yellow]")
    console.print(result.result_text, markup=False)

    if result.new_tasks:
        console.print(f"\n[dim]{len(result.new_tasks)} new task(s), {len(result.queue)} queued[/dim]")


@click.group()
@click.version_option(__version__, prog_name="taskloop")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
def cli(verbose: bool) -> None:
    """TaskLoop - an autonomous task-loop agent."""
    _configure_logging(verbose)


@cli.command()
@click.option("--objective", "-o", help="Goal guiding every prompt (overrides OBJECTIVE).")
@click.option("--initial-task", "-t", help="First task to run (overrides INITIAL_TASK).")
@click.option("--model", "-m", help="Completion model, e.g. gpt-3.5-turbo or groq/llama3-70b.")
@click.option("--max-iterations", "-n", type=click.IntRange(min=1), help="Stop after N iterations.")
@click.option("--interval", type=click.FloatRange(min=0), help="Seconds to sleep between iterations.")
@click.option(
    "--vector-store",
    type=click.Choice(["pinecone", "chroma", "memory"]),
    help="Vector store backend.",
)
@click.option("--keep-going", is_flag=True, default=None, help="Log failed iterations and continue.")
@click.option("--lossy", is_flag=True, default=None, help="Let prioritization drop tasks the model omits.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Config file (default: nearest .taskloop/config.yaml).",
)
def run(
    objective: Optional[str],
    initial_task: Optional[str],
    model: Optional[str],
    max_iterations: Optional[int],
    interval: Optional[float],
    vector_store: Optional[str],
    keep_going: Optional[bool],
    lossy: Optional[bool],
    config_path: Optional[Path],
) -> None:
    """Run the task loop."""
    config = _load_config(config_path)
    config.override(
        "loop",
        objective=objective,
        initial_task=initial_task,
        interval=interval,
        keep_going=keep_going,
        lossless=False if lossy else None,
    )
    config.override("agent", model=model)
    config.override("vector_store", backend=vector_store)

    try:
        loop = build_loop(config)
    except (TaskLoopError, ImportError, ValueError) as e:
        _fail(str(e))

    console.print(Panel(
        f"[bold]{loop.objective}[/bold]\n[dim]model: {config.merged.agent.model}[/dim]",
        title="Objective",
        border_style="blue",
    ))

    try:
        count = loop.run(max_iterations=max_iterations, on_iteration=print_iteration)
    except KeyboardInterrupt:
        console.print(f"\n[dim]Stopped after {loop.iteration} iteration(s).[/dim]")
        return
    except TaskLoopError as e:
        _fail(f"iteration {loop.iteration} failed{_on_task(loop.current_task)}: {e}")
    finally:
        loop.store.close()

    console.print(f"\n[dim]Finished {count} iteration(s); {len(loop.queue)} task(s) left.[/dim]")


@cli.command("init-index")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Config file (default: nearest .taskloop/config.yaml).",
)
def init_index(config_path: Optional[Path]) -> None:
    """Create the vector index if it does not exist."""
    config = _load_config(config_path)
    settings = config.merged.vector_store

    try:
        with create_vector_store(config) as store:
            created = store.ensure_index(settings.index_name, settings.dimension)
    except (TaskLoopError, ImportError) as e:
        _fail(str(e))

    if created:
        console.print(f"[green]✓[/green] Created index [bold]{settings.index_name}[/bold]")
    else:
        console.print(f"[dim]Index {settings.index_name} already exists[/dim]")


@cli.command()
@click.option("--path", type=click.Path(file_okay=False, path_type=Path), help="Project directory.")
def init(path: Optional[Path]) -> None:
    """Write a default .taskloop/config.yaml."""
    config_file = Config.create_default_local(path)
    console.print(f"[dim]Config at {config_file}[/dim]")


@cli.command("config")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Config file (default: nearest .taskloop/config.yaml).",
)
def show_config(config_path: Optional[Path]) -> None:
    """Show the effective configuration with secrets masked."""
    config = _load_config(config_path)
    try:
        data = config.masked()
    except TaskLoopError as e:
        _fail(str(e))

    console.print(yaml.dump(data, default_flow_style=False, sort_keys=False), markup=False)
    console.print(f"[dim]Environment variables: {', '.join(list_env_keys())}[/dim]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

"""floe-es-runner: start a query cluster backed by an embedded search node.

Loads the requested TPC-H tables into the search node, prints the
coordinator URL and keeps the cluster running until interrupted.
"""

from __future__ import annotations

import threading
from typing import Any

import click
import rich_click as rclick
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from floe_elasticsearch import __version__
from floe_elasticsearch.errors import FloeSearchError

rclick.rich_click.TEXT_MARKUP = "markdown"
rclick.rich_click.SHOW_ARGUMENTS = True

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

console = Console()
err_console = Console(stderr=True)


class CLIError(click.ClickException):
    """CLI error with an exit code and Rich formatting."""

    def __init__(self, message: str, exit_code: int = EXIT_FAILURE) -> None:
        super().__init__(message)
        self.exit_code = exit_code

    def show(self, file: Any = None) -> None:
        err_console.print(f"[red]✗[/red] {self.format_message()}")


def wait_for_interrupt() -> None:
    """Block the main thread until Ctrl+C."""
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        console.print("\nShutting down...")


@click.command(cls=rclick.RichCommand)
@click.version_option(version=__version__, prog_name="floe-es-runner")
@click.option(
    "--nodes",
    type=click.IntRange(min=1, max=16),
    default=None,
    help="Query cluster nodes, coordinator included [default: 2]",
)
@click.option(
    "--table",
    "tables",
    multiple=True,
    help="TPC-H table to load (repeatable) [default: all tables]",
)
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Documents per bulk request [default: 1000]",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option(
    "--json-logs/--console-logs",
    default=False,
    help="Render logs as JSON lines",
)
@click.option(
    "--block/--no-block",
    default=True,
    help="Keep the cluster running until interrupted",
)
def main(
    nodes: int | None,
    tables: tuple[str, ...],
    batch_size: int | None,
    log_level: str,
    json_logs: bool,
    block: bool,
) -> None:
    """Run a query cluster with TPC-H data loaded into the search node.

    Examples:

        floe-es-runner

        floe-es-runner --nodes 3 --table nation --table region
    """
    # Import here to keep --help fast
    from floe_elasticsearch.config import LoaderConfig, QueryRunnerSettings
    from floe_elasticsearch.observability import configure_logging, get_logger
    from floe_elasticsearch.runner import TPCH_TABLES, build_cluster

    configure_logging(log_level=log_level.upper(), json_format=json_logs)
    logger = get_logger()

    unknown = sorted(set(tables) - set(TPCH_TABLES))
    if unknown:
        raise CLIError(f"Unknown TPC-H table: {', '.join(unknown)}")

    try:
        settings = QueryRunnerSettings()
        cluster = build_cluster(
            nodes or settings.node_count,
            tables or TPCH_TABLES,
            settings=settings,
            loader_config=LoaderConfig(batch_size=batch_size or settings.batch_size),
        )
    except PydanticValidationError as exc:
        raise CLIError(f"Invalid configuration: {exc}") from None
    except FloeSearchError as exc:
        raise CLIError(str(exc)) from None

    with cluster:
        logger.info("server_started", base_url=cluster.base_url)
        console.print(f"[green]✓[/green] Query cluster running at {cluster.base_url}")
        if block:
            wait_for_interrupt()


if __name__ == "__main__":
    main()

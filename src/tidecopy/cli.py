# src/tidecopy/cli.py
"""Command-line interface for the tidecopy tool."""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tidecopy.capabilities import DEFAULT_REGISTRY
from tidecopy.config import RunConfig
from tidecopy.exceptions import TidecopyError
from tidecopy.models import IfExists, TaskState
from tidecopy.pipeline import TransferPipeline
from tidecopy.report import TransferReport
from tidecopy.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["aiobotocore", "botocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


async def main_async(
    config: RunConfig,
    source: str,
    destination: str,
    delete_source: bool,
    overrides: Dict[str, str],
    show_progress: bool,
    if_exists: IfExists = IfExists.OVERWRITE,
) -> TransferReport:
    """
    Asynchronously execute one transfer.

    Args:
        config (RunConfig): The run configuration.
        source (str): The source locator.
        destination (str): The destination locator.
        delete_source (bool): Move instead of copy.
        overrides (Dict[str, str]): Per-run credential overrides.
        show_progress (bool): Whether to render the progress bar.
        if_exists (IfExists): Policy for destination objects that exist.

    Returns:
        TransferReport: The outcome of the run.
    """
    shutdown: GracefulShutdown = GracefulShutdown()
    async with shutdown as shutdown_event:
        pipeline: TransferPipeline = TransferPipeline(
            config,
            dict(os.environ),
            shutdown_event,
            overrides=overrides,
            show_progress=show_progress,
        )
        shutdown.pending = pipeline.pending
        report: TransferReport = await pipeline.run(
            source, destination, delete_source, if_exists
        )
    if shutdown.received is not None:
        hint: str = (
            "rerun with the same --journal-dir to skip finished objects"
            if config.journal_dir is not None
            else "rerun to copy the remaining objects"
        )
        logger.warning(f"Run interrupted by {shutdown.received}; {hint}.")
    return report


def _print_report(report: TransferReport) -> None:
    """Prints every task that did not succeed."""
    console: Console = Console(stderr=True)
    unfinished = [r for r in report.results if r.state != TaskState.SUCCEEDED]
    if unfinished:
        table: Table = Table(title="Objects not copied")
        table.add_column("Source")
        table.add_column("State")
        table.add_column("Attempts", justify="right")
        table.add_column("Error")
        for result in unfinished:
            state: str = result.state.value
            if result.failure is not None:
                state = f"{state} ({result.failure.value})"
            table.add_row(
                result.source, state, str(result.attempts), result.error or ""
            )
        console.print(table)


def _run_transfer(
    source: str, destination: str, delete_source: bool, **kwargs: Any
) -> None:
    load_dotenv()
    setup_logging(kwargs["log_level"])

    try:
        journal_dir: Optional[str] = kwargs["journal_dir"]
        report_file: Optional[str] = kwargs["report_file"]
        config: RunConfig = RunConfig.from_env(
            os.environ,
            concurrency=kwargs["concurrency"],
            max_attempts=kwargs["max_attempts"],
            page_size=kwargs["page_size"],
            journal_dir=Path(journal_dir) if journal_dir else None,
            report_path=Path(report_file) if report_file else None,
        )
        overrides: Dict[str, str] = {
            name: value
            for name, value in (
                ("DEFAULT_REGION", kwargs["region"]),
                ("ENDPOINT_URL", kwargs["endpoint_url"]),
            )
            if value
        }

        report: TransferReport = asyncio.run(
            main_async(
                config,
                source,
                destination,
                delete_source,
                overrides,
                show_progress=not kwargs["no_progress"],
                if_exists=IfExists(kwargs["if_exists"]),
            )
        )
    except TidecopyError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)

    _print_report(report)
    if not report.ok:
        sys.exit(1)
    logger.info("✅ Run completed successfully.")


def transfer_options(func: Any) -> Any:
    """Options shared by `cp` and `mv`."""
    options = [
        click.argument("source"),
        click.argument("destination"),
        click.option(
            "--concurrency",
            type=click.IntRange(min=1),
            default=None,
            help="Number of objects copied concurrently. [default: 16]",
        ),
        click.option(
            "--max-attempts",
            type=click.IntRange(min=1),
            default=None,
            help="Attempts per object before giving up. [default: 5]",
        ),
        click.option(
            "--page-size",
            type=click.IntRange(min=1),
            default=None,
            help="Objects requested per listing page. [default: 1000]",
        ),
        click.option(
            "--journal-dir",
            type=click.Path(file_okay=False, dir_okay=True, writable=True),
            default=None,
            help="Record completed copies here and skip them on later runs.",
        ),
        click.option(
            "--report-file",
            type=click.Path(dir_okay=False, writable=True),
            default=None,
            help="Write a per-object report (.parquet, otherwise CSV).",
        ),
        click.option(
            "--if-exists",
            type=click.Choice([mode.value for mode in IfExists]),
            default=IfExists.OVERWRITE.value,
            show_default=True,
            help="What to do when a destination object already exists.",
        ),
        click.option("--region", default=None, help="Overrides DEFAULT_REGION."),
        click.option(
            "--endpoint-url", default=None, help="Overrides ENDPOINT_URL."
        ),
        click.option(
            "--no-progress",
            is_flag=True,
            default=False,
            help="Do not render the progress bar.",
        ),
        click.option(
            "--log-level",
            default="INFO",
            type=click.Choice(
                ["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False
            ),
            help="Set the logging level.",
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
def cli() -> None:
    """
    Copy objects between local paths and S3-compatible buckets.

    Locators look like ``s3://bucket/path`` or a plain local path. A trailing
    "/" marks a prefix (directory-like) locator. S3 credentials are read from
    ACCESS_KEY_ID, SECRET_ACCESS_KEY, DEFAULT_REGION and optionally
    SESSION_TOKEN and ENDPOINT_URL, including from a .env file.
    """


@cli.command()
@transfer_options
def cp(source: str, destination: str, **kwargs: Any) -> None:
    """Copy SOURCE to DESTINATION."""
    _run_transfer(source, destination, delete_source=False, **kwargs)


@cli.command()
@transfer_options
def mv(source: str, destination: str, **kwargs: Any) -> None:
    """Copy SOURCE to DESTINATION, deleting each source object once copied."""
    _run_transfer(source, destination, delete_source=True, **kwargs)


@cli.command()
def features() -> None:
    """Show which operations each backend supports."""
    Console().print(DEFAULT_REGISTRY.render_feature_matrix())


if __name__ == "__main__":
    cli()

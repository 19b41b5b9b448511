"""Main entry point for the cascstore CLI."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
import structlog
from rich.console import Console

from cascstore import __version__
from cascstore.commands.examine import examine
from cascstore.core.config import AppConfig


def configure_logging(colors: bool = False) -> None:
    """Configure structlog processors for CLI use."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


configure_logging()

logger = structlog.get_logger()


@click.group()
@click.version_option(version=__version__, prog_name="cascstore")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json", "plain"], case_sensitive=False),
    default=None,
    help="Output format",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    verbose: bool,
    debug: bool,
    output: str | None,
) -> None:
    """Read and verify local CASC storage."""
    ctx.ensure_object(dict)

    try:
        app_config = AppConfig.load(config)
    except (OSError, ValueError) as e:
        logger.error("Failed to load configuration", error=str(e))
        sys.exit(1)

    # Override config with CLI options
    if verbose or debug:
        app_config.log_level = "DEBUG" if debug else "INFO"
        logging.basicConfig(level=getattr(logging, app_config.log_level), format="%(message)s")
    if output:
        app_config.output_format = output.lower()

    if debug:
        configure_logging(colors=True)

    output_format = app_config.output_format
    console = Console(
        force_terminal=output_format == "rich",
        no_color=output_format != "rich",
        width=None if output_format == "rich" else 120,
    )

    ctx.obj["config"] = app_config
    ctx.obj["console"] = console
    ctx.obj["verbose"] = verbose or debug
    ctx.obj["debug"] = debug

    logger.debug("CLI initialized", config=app_config.model_dump(mode="json"))


@main.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    console: Console = ctx.obj["console"]
    config: AppConfig = ctx.obj["config"]

    if config.output_format == "json":
        info = {
            "name": "cascstore",
            "version": __version__,
            "python_version": sys.version.replace("\n", " "),
            "platform": sys.platform,
        }
        # Use regular print for JSON to avoid Rich formatting
        print(json.dumps(info, indent=2))
    else:
        console.print(f"cascstore {__version__}")
        if ctx.obj["verbose"]:
            console.print(f"Python {sys.version}")
            console.print(f"Platform: {sys.platform}")


main.add_command(examine)


if __name__ == "__main__":
    main()

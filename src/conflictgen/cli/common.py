"""Shared utilities for conflictgen CLI commands."""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Optional

import click

from ..config import ConflictGenConfig, resolve_config_path
from ..errors import ConflictGenError

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

LOG_LEVELS = {
    VERBOSITY_QUIET: logging.ERROR,
    VERBOSITY_NORMAL: logging.WARNING,
    VERBOSITY_VERBOSE: logging.INFO,
}


def configure_logging(verbosity: int) -> None:
    """Route library logging to stderr at a level matching the verbosity."""
    logging.basicConfig(
        level=LOG_LEVELS.get(verbosity, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def get_config_path(ctx_config: Optional[Path] = None) -> Path:
    """Get the config file path.

    Priority: --config flag > CONFLICTGEN_CONFIG env var > default path.
    """
    return resolve_config_path(ctx_config)


def load_config(ctx: click.Context) -> ConflictGenConfig:
    """Load and validate configuration, exiting with status 1 on error."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    try:
        config = ConflictGenConfig.load(ctx.obj.get('config_path'))
        if ctx.obj.get('backend'):
            config.store.backend = ctx.obj['backend']
        config.validate()
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)
    return config


def run_async(coro: Awaitable[Any]) -> Any:
    """Run a coroutine from a synchronous click command."""
    return asyncio.run(coro)


def should_print(verbosity: int, message_level: int) -> bool:
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a critical message that should always be shown (even in quiet mode)."""
    click.echo(message, err=False)

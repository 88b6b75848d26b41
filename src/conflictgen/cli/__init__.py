"""conflictgen CLI - Multi-region write conflict generator

Command modules:
- generate.py: generate, demo
- store.py: setup, cleanup, conflicts list/clear
- config.py: init, config set/get/show
- common.py: shared utilities
"""
from pathlib import Path
import click

from .. import __version__

# Local imports
from .common import VERBOSITY_NORMAL, VERBOSITY_QUIET, VERBOSITY_VERBOSE, configure_logging
from .config import config_group, init
from .generate import demo, generate
from .store import cleanup, conflicts_group, setup


@click.group()
@click.version_option(version=__version__, prog_name="conflictgen")
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              envvar='CONFLICTGEN_CONFIG',
              help='Configuration file (default: ~/.conflictgen/config.yaml)')
@click.option('--backend', type=click.Choice(['cosmos', 'memory']), default=None,
              help='Override store.backend')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, config_path, backend, verbose, quiet):
    """conflictgen - Multi-region write conflict generator

    Writes the same document concurrently from every write region of a
    multi-master account until the store records a conflict.

    \b
    Key Commands:
        init              Write a configuration template
        setup             Create database and collections
        generate KIND     Generate insert, update or delete conflicts
        demo              Run all three campaigns in turn
        conflicts list    Show the conflict feed
        cleanup           Remove conflicts and test documents

    \b
    Examples:
        conflictgen init
        conflictgen setup
        conflictgen generate insert --rounds 5
        conflictgen --backend memory generate delete --rounds 20
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['config_path'] = Path(config_path) if config_path else None
    ctx.obj['backend'] = backend
    configure_logging(ctx.obj['verbosity'])


cli.add_command(init)
cli.add_command(config_group, name='config')
cli.add_command(setup)
cli.add_command(cleanup)
cli.add_command(generate)
cli.add_command(demo)
cli.add_command(conflicts_group, name='conflicts')


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    'cli',
    'main',
]

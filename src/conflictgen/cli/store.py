"""Store setup, conflict feed and cleanup commands for conflictgen CLI."""
import sys

import click

from ..errors import ConflictGenError
from ..generator import ConflictGenerator

# Local CLI imports
from .common import VERBOSITY_NORMAL, echo_normal, echo_quiet, echo_verbose, load_config, run_async


@click.command('setup')
@click.pass_context
def setup(ctx) -> None:
    """Create the database and both collections.

    Creates:
    - the last-writer-wins collection (resolution path /userdefinedid)
    - the custom-resolution collection (conflicts go to the feed)
    Both are partitioned on /postalcode. Run once before generating conflicts.
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    async def run():
        async with ConflictGenerator(config) as generator:
            return await generator.provision()

    echo_normal(click.style("Provisioning database and collections...", fg="cyan", bold=True),
                verbosity)
    try:
        created = run_async(run())
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)

    for name, was_created in created.items():
        if was_created:
            echo_normal(f" ✓ Created {name}", verbosity)
        else:
            echo_normal(f" ⚠ {name} already exists", verbosity)


@click.command('cleanup')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def cleanup(ctx, yes) -> None:
    """Delete unresolved conflicts and all documents from both collections."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    if not yes:
        click.confirm(f"Delete all documents and conflicts in {config.store.database}?",
                      abort=True)

    async def run():
        async with ConflictGenerator(config) as generator:
            return await generator.cleanup()

    try:
        report = run_async(run())
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)

    echo_normal(click.style(
        f"✓ Deleted {report.conflicts_deleted} conflict(s) and "
        f"{report.documents_deleted} document(s)", fg="green"), verbosity)


@click.group()
def conflicts_group():
    """Conflict feed commands."""
    pass


@conflicts_group.command('list')
@click.option('--collection', type=click.Choice(['lww', 'custom']), default='custom',
              help='Collection whose feed to read')
@click.pass_context
def conflicts_list(ctx, collection) -> None:
    """List entries of a collection's conflict feed."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    async def run():
        async with ConflictGenerator(config) as generator:
            return await generator.list_conflicts(collection)

    try:
        entries = run_async(run())
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)

    echo_normal(f"Conflicts in {config.collection_ref(collection)}: {len(entries)}", verbosity)
    for entry in entries:
        echo_quiet(f"  {entry.id}  {entry.operation_type:<8} resource={entry.resource_id}", verbosity)
        echo_verbose(f"    content: {entry.content}", verbosity)


@conflicts_group.command('clear')
@click.option('--collection', type=click.Choice(['lww', 'custom']), default='custom',
              help='Collection whose feed to clear')
@click.pass_context
def conflicts_clear(ctx, collection) -> None:
    """Delete every entry of a collection's conflict feed."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    async def run():
        async with ConflictGenerator(config) as generator:
            return await generator.clear_conflicts(collection)

    try:
        count = run_async(run())
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)

    echo_normal(click.style(f"✓ Deleted {count} conflict(s)", fg="green"), verbosity)

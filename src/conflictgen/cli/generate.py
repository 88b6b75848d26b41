"""Conflict generation commands for conflictgen CLI."""
import asyncio
import sys
from typing import Optional

import click

from ..campaign import CampaignResult
from ..errors import CampaignAborted, ConflictGenError
from ..generator import ConflictGenerator
from ..models import Committed, ConflictKind, LostRace
from ..rounds import RoundResult

# Local CLI imports
from .common import (
    VERBOSITY_NORMAL,
    echo_normal,
    echo_quiet,
    echo_verbose,
    load_config,
    run_async,
)

INTRODUCTIONS = {
    ConflictKind.INSERT: "Insert documents with the same Id in multiple regions.",
    ConflictKind.UPDATE: "Update a document with same ID in multiple regions to generate conflicts.",
    ConflictKind.DELETE: ("Asynchronously update a deleted document with the same ID in "
                          "multiple regions to generate conflicts."),
}


def _echo_round(result: RoundResult, verbosity: int) -> None:
    colour = "green" if result.succeeded else "yellow"
    echo_normal(click.style(result.summary(), fg=colour), verbosity)
    for outcome in result.outcomes:
        if isinstance(outcome, Committed):
            echo_verbose(f"  ✓ {outcome.record.region}: committed {outcome.record}", verbosity)
        elif isinstance(outcome, LostRace):
            echo_verbose(f"  - {outcome.region}: lost race ({outcome.reason})", verbosity)


def _echo_result(result: CampaignResult, verbosity: int) -> None:
    if result.confirmed:
        echo_quiet(click.style(
            f"✓ {result.kind.value} conflict confirmed after {result.rounds_attempted} round(s)",
            fg="green"), verbosity)
    else:
        echo_quiet(click.style(
            f"⚠ No {result.kind.value} conflict confirmed after {result.rounds_attempted} "
            f"round(s) ({result.stopped_by})", fg="yellow"), verbosity)


def _operator_hook():
    async def should_continue(result: RoundResult) -> bool:
        if result.succeeded:
            question = "Continue generating conflicts?"
        else:
            question = "No conflicts induced this round. Try again?"
        return await asyncio.to_thread(click.confirm, question, default=True)
    return should_continue


def _progress_listener(verbosity: int):
    def on_round(result: RoundResult) -> None:
        _echo_round(result, verbosity)
    return on_round


async def _run_campaign(config, kind: ConflictKind, collection: Optional[str],
                        rounds: Optional[int], interactive: bool, seed: Optional[int],
                        deadline: Optional[float], confirm_feed: Optional[bool],
                        verbosity: int) -> CampaignResult:
    async with ConflictGenerator(config) as generator:
        target = generator.collection_for(kind, collection)
        hook = None
        stop_on_success = True
        if interactive:
            hook = _operator_hook()
            # Insert and update campaigns run until the operator stops them
            stop_on_success = kind == ConflictKind.DELETE
        return await generator.generate(
            kind,
            collection=target,
            max_rounds=rounds,
            should_continue=hook,
            on_round=_progress_listener(verbosity),
            stop_on_success=stop_on_success,
            deadline=deadline,
            seed=seed,
            confirm_with_feed=confirm_feed,
        )


@click.command('generate')
@click.argument('kind', type=click.Choice(['insert', 'update', 'delete']))
@click.option('--rounds', '-n', type=click.IntRange(min=0), default=None,
              help='Maximum rounds (default: campaign.max_rounds, unbounded if unset)')
@click.option('--interactive/--no-interactive', default=False,
              help='Ask before every new round')
@click.option('--collection', type=click.Choice(['lww', 'custom']), default=None,
              help='Target collection (default: lww for insert, custom otherwise)')
@click.option('--seed', type=int, default=None, help='Random seed for record ids')
@click.option('--settle-delay', type=float, default=None,
              help='Seconds to wait for replication after fan-out')
@click.option('--seed-delay', type=float, default=None,
              help='Seconds to wait after the seeding insert')
@click.option('--deadline', type=float, default=None,
              help='Do not start new rounds after this many seconds')
@click.option('--confirm-feed/--no-confirm-feed', default=None,
              help='Require new conflict feed entries (default: delete on custom only)')
@click.pass_context
def generate(ctx, kind, rounds, interactive, collection, seed, settle_delay, seed_delay,
             deadline, confirm_feed) -> None:
    """Generate write conflicts of one KIND across all regions.

    \b
    Examples:
        conflictgen generate insert --rounds 5
        conflictgen generate update --interactive
        conflictgen generate delete --rounds 20 --seed 7
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)
    if settle_delay is not None:
        config.campaign.settle_delay = settle_delay
    if seed_delay is not None:
        config.campaign.seed_delay = seed_delay

    conflict_kind = ConflictKind.from_string(kind)
    echo_normal(click.style(INTRODUCTIONS[conflict_kind], fg="cyan", bold=True), verbosity)
    echo_verbose(f"Regions: {', '.join(config.store.regions)} ({config.store.backend})", verbosity)
    if interactive:
        click.pause()

    try:
        result = run_async(_run_campaign(config, conflict_kind, collection, rounds, interactive,
                                         seed, deadline, confirm_feed, verbosity))
    except CampaignAborted as e:
        echo_quiet(click.style(f"Error: campaign aborted: {e}", fg="red"), verbosity)
        sys.exit(1)
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)

    _echo_result(result, verbosity)


@click.command('demo')
@click.option('--rounds', '-n', type=click.IntRange(min=0), default=10,
              help='Maximum rounds per conflict kind')
@click.option('--seed', type=int, default=None, help='Random seed for record ids')
@click.pass_context
def demo(ctx, rounds, seed) -> None:
    """Run insert (last-writer-wins), update and delete (custom) campaigns in turn."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    async def run_all():
        results = []
        async with ConflictGenerator(config) as generator:
            for kind in (ConflictKind.INSERT, ConflictKind.UPDATE, ConflictKind.DELETE):
                echo_normal(click.style(INTRODUCTIONS[kind], fg="cyan", bold=True), verbosity)
                results.append(await generator.generate(
                    kind, max_rounds=rounds, seed=seed,
                    on_round=_progress_listener(verbosity),
                ))
        return results

    try:
        results = run_async(run_all())
    except ConflictGenError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), verbosity)
        sys.exit(1)

    for result in results:
        _echo_result(result, verbosity)

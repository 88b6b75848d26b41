"""Configuration management commands for conflictgen CLI."""
import sys

import click
import yaml

from ..config import CONFIG_TEMPLATE

# Local CLI imports
from .common import VERBOSITY_NORMAL, echo_normal, echo_quiet, get_config_path


@click.command('init')
@click.option('--force', is_flag=True, help='Overwrite an existing config file')
@click.pass_context
def init(ctx, force) -> None:
    """Write a configuration template.

    The master key is not stored in the file; export CONFLICTGEN_KEY instead.
    """
    config_path = get_config_path(ctx.obj.get('config_path'))
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)

    if config_path.exists() and not force:
        echo_normal(f" ⚠ Config exists: {config_path}", verbosity)
        return

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(CONFIG_TEMPLATE)
    echo_normal(f" ✓ Created config: {config_path}", verbosity)


@click.group()
def config_group():
    """Configuration management commands."""
    pass


def _read_config(ctx):
    config_path = get_config_path(ctx.obj.get('config_path'))
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    if not config_path.exists():
        echo_quiet(click.style("Error: No configuration found. Run 'conflictgen init' first.",
                               fg="red"), verbosity)
        sys.exit(1)
    try:
        return config_path, yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        echo_quiet(click.style(f"Error: Invalid configuration: {e}", fg="red"), verbosity)
        sys.exit(1)


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    Values are parsed as YAML, so numbers, booleans and lists keep their type.

    Examples:
        conflictgen config set store.backend memory
        conflictgen config set campaign.settle_delay 2.5
        conflictgen config set store.regions "[West US 2, North Europe]"
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config_path, config_data = _read_config(ctx)

    keys = key.split('.')
    current = config_data
    for k in keys[:-1]:
        if not isinstance(current.get(k), dict):
            current[k] = {}
        current = current[k]

    current[keys[-1]] = yaml.safe_load(value)

    config_path.write_text(yaml.dump(config_data, default_flow_style=False, sort_keys=False))
    echo_normal(click.style(f"✓ Set {key} = {value}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value.

    Examples:
        conflictgen config get store.regions
        conflictgen config get campaign.settle_delay
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    _, config_data = _read_config(ctx)

    current = config_data
    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
            sys.exit(1)
        current = current[k]

    echo_quiet(current, verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display full configuration."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config_path, _ = _read_config(ctx)

    echo_normal(click.style(f"Current configuration ({config_path}):", fg="cyan", bold=True),
                verbosity)
    echo_quiet(config_path.read_text(), verbosity)

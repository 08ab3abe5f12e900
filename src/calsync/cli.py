"""CLI for calsync: inspect and validate sync configuration."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from calsync import __version__
from calsync.config import ConfigError, load_config
from calsync.sync.retry import JITTER_FRACTION

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """calsync: one-way calendar binding reconciliation."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(name)s: %(message)s")


@cli.command("check-config")
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def check_config(config_path: Path) -> None:
    """Validate a calsync.toml file and print its effective settings."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Invalid config: {exc}", err=True)
        sys.exit(1)

    click.echo(f"service_name: {config.service_name}")
    click.echo(f"logging: level={config.logging.level} format={config.logging.format}")
    if config.logging.log_root:
        click.echo(f"  log_root: {config.logging.log_root}")
    scheduler = config.scheduler
    click.echo(
        f"scheduler: failure_cooldown_s={scheduler.failure_cooldown_s:g} "
        f"shutdown_timeout_s={scheduler.shutdown_timeout_s:g} "
        f"past_days={scheduler.past_days} status_queue_size={scheduler.status_queue_size}"
    )
    retry = config.retry
    click.echo(
        f"retry: max_attempts={retry.max_attempts} initial_delay_ms={retry.initial_delay_ms:g} "
        f"multiplier={retry.multiplier:g} max_delay_ms={retry.max_delay_ms:g} "
        f"jitter={'on' if retry.jitter else 'off'}"
    )
    click.echo("OK")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def backoff(config_path: Path) -> None:
    """Print the retry delay schedule of the configured policy."""
    try:
        policy = load_config(config_path).retry.to_policy()
    except ConfigError as exc:
        click.echo(f"Invalid config: {exc}", err=True)
        sys.exit(1)

    base = policy.model_copy(update={"jitter": False})
    click.echo(f"initial attempt + {policy.max_attempts} retries")
    for attempt in range(policy.max_attempts):
        delay = base.calculate_delay(attempt)
        if policy.jitter:
            click.echo(
                f"  retry {attempt + 1}: {delay:.0f}ms "
                f"(+ up to {delay * JITTER_FRACTION:.0f}ms jitter)"
            )
        else:
            click.echo(f"  retry {attempt + 1}: {delay:.0f}ms")


def main() -> None:
    cli()

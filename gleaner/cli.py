"""Gleaner CLI: run the pipeline, rebuild outputs, inspect checkpoints.

Usage:
    gleaner run                             # Discover apps, then collect reviews
    gleaner run --mode discover             # Discovery only
    gleaner run --mode collect --skip-failed
    gleaner run --no-resume --headful       # Start over in a visible browser
    gleaner export                          # Rewrite CSV/JSON from the checkpoint
    gleaner status                          # Show checkpoint progress
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from gleaner.common.exceptions import GleanerException, NoEntitiesError
from gleaner.config import ConfigError, GleanerConfig, load_config
from gleaner.pipeline import Pipeline


def _setup_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_path: str | None, data_dir: str | None) -> GleanerConfig:
    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    if data_dir:
        config = config.model_copy(
            update={
                "storage": config.storage.model_copy(
                    update={"data_dir": Path(data_dir)}
                )
            }
        )
    return config


def _apply_run_overrides(
    config: GleanerConfig,
    query: str | None,
    headful: bool,
    skip_failed: bool,
) -> GleanerConfig:
    updates = {}
    if query:
        updates["discovery"] = config.discovery.model_copy(update={"query": query})
    if headful:
        updates["renderer"] = config.renderer.model_copy(update={"headless": False})
    if skip_failed:
        updates["collection"] = config.collection.model_copy(
            update={"on_entity_error": "skip"}
        )
    return config.model_copy(update=updates) if updates else config


_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON configuration file.",
)
_data_dir_option = click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for checkpoints and outputs (default: ./data).",
)


@click.group()
@click.version_option(package_name="gleaner")
def cli() -> None:
    """Gleaner: resumable app store review collection."""


@cli.command()
@click.option(
    "--mode",
    type=click.Choice(["full", "discover", "collect"]),
    default="full",
    show_default=True,
    help="Which phases to run.",
)
@click.option("--headful", is_flag=True, help="Show the browser window.")
@click.option(
    "--no-resume",
    is_flag=True,
    help="Ignore existing checkpoints and start fresh.",
)
@click.option(
    "--skip-failed",
    is_flag=True,
    help="Record apps that keep failing and move on instead of aborting.",
)
@click.option(
    "--rescrape",
    multiple=True,
    metavar="SLUG",
    help="Collect this app again even if already scraped. Repeatable.",
)
@click.option("--query", default=None, help="Search query for discovery.")
@_data_dir_option
@_config_option
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def run(
    mode: str,
    headful: bool,
    no_resume: bool,
    skip_failed: bool,
    rescrape: tuple[str, ...],
    query: str | None,
    data_dir: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Discover apps and collect their reviews.

    \b
    Examples:
        gleaner run
        gleaner run --query "shipping" --data-dir shipping-data
        gleaner run --mode collect --rescrape printful
    """
    _setup_logging(verbose)
    config = _apply_run_overrides(
        _load(config_path, data_dir), query, headful, skip_failed
    )

    click.echo(f"Mode:     {mode}")
    click.echo(f"Data dir: {config.storage.data_dir}")

    pipeline = Pipeline(config)
    try:
        result = asyncio.run(
            pipeline.run(mode, resume=not no_resume, rescrape=rescrape)
        )
    except NoEntitiesError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except GleanerException as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Apps:     {len(result.entities)}")
    if mode != "discover":
        click.echo(f"Reviews:  {len(result.records)}")
    if result.failed:
        click.echo(f"Failed:   {', '.join(result.failed)}")
    if result.outputs:
        for path in result.outputs:
            click.echo(f"Wrote {path}")
    click.echo("Done.")


@cli.command()
@_data_dir_option
@_config_option
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def export(data_dir: str | None, config_path: str | None, verbose: bool) -> None:
    """Rewrite the CSV and JSON outputs from the combined checkpoint."""
    _setup_logging(verbose)
    pipeline = Pipeline(_load(config_path, data_dir))
    try:
        outputs = pipeline.export()
    except GleanerException as e:
        raise click.ClickException(str(e)) from e
    if outputs is None:
        raise click.ClickException(
            "No reviews in the combined checkpoint; nothing to export."
        )
    for path in outputs:
        click.echo(f"Wrote {path}")


@cli.command()
@_data_dir_option
@_config_option
def status(data_dir: str | None, config_path: str | None) -> None:
    """Show discovery and collection progress."""
    pipeline = Pipeline(_load(config_path, data_dir))
    try:
        st = pipeline.status()
    except GleanerException as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Data dir:  {st.data_dir}")
    state = (
        "complete"
        if st.discovery_complete
        else f"in progress (page {st.discovery_page})"
    )
    click.echo(f"Discovery: {st.apps_discovered} apps, {state}")
    click.echo(f"Scraped:   {st.scraped} apps ({st.remaining} remaining)")
    click.echo(f"Reviews:   {st.combined_records}")
    if st.failed:
        click.echo(f"Failed:    {', '.join(st.failed)}")


def main() -> None:
    """Entry point for the ``gleaner`` console script."""
    cli()

"""
The cli module defines genretag's CLI interface. It does not have any domain logic of its own. It
is dedicated to parsing arguments, sequencing the pipeline phases, and printing their summaries.

Commands that print JSON keep stdout to the JSON document and send the summaries to stderr.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click

from genretag.config import Config

if TYPE_CHECKING:
    from genretag.aggregator import AggregateResult
    from genretag.indexer import PathIndex

logger = logging.getLogger(__name__)


@dataclass
class Context:
    config: Config


# fmt: off
@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Emit verbose logging.")
@click.option("--config", "-c", type=click.Path(path_type=Path), help="Override the config file location.")
@click.pass_context
# fmt: on
def cli(cc: click.Context, verbose: bool, config: Path | None = None) -> None:
    """Tag a music library with genres from an external catalog."""
    cc.obj = Context(
        config=Config.parse(config_path_override=config),
    )
    logging.getLogger("genretag").setLevel(logging.DEBUG if verbose else logging.INFO)


# fmt: off
@cli.command()
@click.option("--with-genres", "-g", is_flag=True, help="Also read each file's current genre tag.")
@click.pass_obj
# fmt: on
def index(ctx: Context, with_genres: bool) -> None:
    """Print the track ID -> file path index of the music source directory (in JSON)."""
    from genretag.indexer import dump_path_index, index_library

    result = index_library(ctx.config.music_source_dir, ctx.config.manifest_name)
    click.echo(dump_path_index(result.paths, with_genres))
    click.echo(result.summary(), err=True)


@cli.command()
@click.pass_obj
def genres(ctx: Context) -> None:
    """Print the genres the catalog has for each indexed track (in JSON). Does not modify files."""
    from genretag.aggregator import dump_genres

    _, aggregated = _index_and_aggregate(ctx.config, err=True)
    click.echo(dump_genres(aggregated.genres))


# fmt: off
@cli.command()
@click.option("--dry-run", "-d", is_flag=True, help="Resolve genres, but do not rewrite any files.")
@click.pass_obj
# fmt: on
def tag(ctx: Context, dry_run: bool) -> None:
    """Write each indexed track's genres into its audio file."""
    from genretag.rewriter import rewrite_library

    paths, aggregated = _index_and_aggregate(ctx.config)
    if dry_run:
        click.echo("Dry run: not writing genres to disk.")
        return

    click.echo("Writing genres to disk...")
    result = rewrite_library(
        paths,
        aggregated.genres,
        max_proc=ctx.config.max_proc,
        temp_suffix=ctx.config.temp_suffix,
    )
    click.echo(result.summary())
    click.echo("Finished!")


def _index_and_aggregate(c: Config, err: bool = False) -> tuple["PathIndex", "AggregateResult"]:
    from genretag.aggregator import aggregate_genres
    from genretag.catalog import connect_catalog
    from genretag.indexer import index_library

    click.echo(f"Getting folders in {c.music_source_dir}", err=err)
    indexed = index_library(c.music_source_dir, c.manifest_name)
    click.echo(indexed.summary(), err=err)

    click.echo("Grabbing genres from the catalog...", err=err)
    catalog = connect_catalog(c)
    aggregated = aggregate_genres(
        catalog,
        indexed.paths,
        page_size=c.page_size,
        jitter_ms_per_track=c.jitter_ms_per_track,
        reconcile=c.reconcile_unresolved,
    )
    click.echo(aggregated.summary(), err=err)
    return indexed.paths, aggregated

"""ShelfRag CLI - shelfrag command."""

from pathlib import Path

import click

from shelfrag import __version__
from shelfrag.cli.index import index_command
from shelfrag.cli.purge import purge_command
from shelfrag.cli.search import search_command
from shelfrag.cli.status import status_command
from shelfrag.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="shelfrag")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--root",
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
    help="Project directory holding .shelfrag/ (default: current directory)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, root: Path) -> None:
    """ShelfRag - local semantic search over a media library."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["root"] = root.resolve()
    # Results go to stdout; keep routine INFO events off the terminal.
    configure_logging(level="DEBUG" if verbose else "WARNING")


cli.add_command(index_command, name="index")
cli.add_command(search_command, name="search")
cli.add_command(status_command, name="status")
cli.add_command(purge_command, name="purge")


if __name__ == "__main__":
    cli()

"""shelfrag purge command - remove stored embeddings."""

import click
import questionary

from shelfrag.cli.utils import open_app
from shelfrag.core.errors import ShelfRagError
from shelfrag.core.progress import pluralize, status


@click.command()
@click.option("--source", default=None, help="Remove only embeddings from this source")
@click.option("--all", "purge_all", is_flag=True, help="Remove every stored embedding")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def purge_command(ctx: click.Context, source: str | None, purge_all: bool, yes: bool) -> None:
    """Delete embeddings so the next index run rebuilds them."""
    if (source is None) == (not purge_all):
        raise click.UsageError("Pass exactly one of --source or --all")

    if purge_all and not yes:
        answer = questionary.confirm(
            "Delete every stored embedding? This cannot be undone.",
            default=False,
        ).ask()
        if not answer:
            status("Cancelled", style="none")
            return

    with open_app(ctx) as app:
        try:
            if source is not None:
                deleted = app.store.delete_by_source(source)
            else:
                app.store.delete_all()
        except ShelfRagError as e:
            raise click.ClickException(e.message) from e

    if source is not None:
        status(f"Removed {pluralize(deleted, 'embedding')} from {source}", style="success")
    else:
        status("Removed all embeddings", style="success")

"""shelfrag index command - embed library items into the vector store."""

from pathlib import Path

import click

from shelfrag.cli.utils import echo_json, open_app
from shelfrag.core.errors import ShelfRagError
from shelfrag.core.progress import pluralize, progress_callback, status


@click.command()
@click.option(
    "--library",
    "library",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with the library items",
)
@click.option("--force", is_flag=True, help="Re-embed items that already have an embedding")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def index_command(ctx: click.Context, library: Path, force: bool, as_json: bool) -> None:
    """Index every library item that lacks an embedding."""
    with open_app(ctx, library) as app:
        try:
            with progress_callback("Indexing", unit="items") as on_progress:
                result = app.index(force=force, on_progress=on_progress)
        except ShelfRagError as e:
            raise click.ClickException(e.message) from e

    if as_json:
        echo_json(result.to_dict())
        return

    if result.not_configured:
        raise click.ClickException(
            "No embedding provider is configured. Set SHELFRAG__CLOUD__API_KEY "
            "or install a local model (SHELFRAG__LOCAL__ALLOW_DOWNLOAD=true)."
        )

    status(
        f"Indexed {pluralize(result.indexed, 'item')} with {result.source} "
        f"({result.skipped} skipped, {result.failed} failed)",
        style="success" if result.failed == 0 else "warning",
    )
    if result.rate_limited and result.last_error is not None:
        status(
            f"Rate limited. Please wait {result.last_error.cooldown_seconds}s and run again "
            "to index the remaining items.",
            style="warning",
        )
    elif result.last_error is not None:
        status(f"Last error: {result.last_error.message}", style="error")

"""shelfrag search command - semantic library search."""

from pathlib import Path

import click

from shelfrag.cli.utils import echo_json, open_app
from shelfrag.core.errors import ShelfRagError
from shelfrag.library.search import SearchStatus


@click.command()
@click.argument("query")
@click.option(
    "--library",
    "library",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with the library items",
)
@click.option("-n", "--limit", type=click.IntRange(min=1), default=None, help="Max results")
@click.option("--no-rerank", is_flag=True, help="Skip BM25 re-ranking")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search_command(
    ctx: click.Context,
    query: str,
    library: Path,
    limit: int | None,
    no_rerank: bool,
    as_json: bool,
) -> None:
    """Find library items matching QUERY by meaning."""
    with open_app(ctx, library) as app:
        try:
            outcome = app.search(query, limit=limit, use_reranking=not no_rerank)
        except ShelfRagError as e:
            raise click.ClickException(e.message) from e

    if as_json:
        echo_json(outcome.to_dict())
        return

    if outcome.status is not SearchStatus.OK:
        click.echo(outcome.message)
        return

    for rank, item in enumerate(outcome.items, start=1):
        byline = item.author or item.artist
        suffix = f" - {byline}" if byline else ""
        click.echo(f"{rank}. {item.title}{suffix}  [id {item.id}]")

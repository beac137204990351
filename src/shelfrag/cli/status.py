"""shelfrag status command - show index and provider state."""

import click

from shelfrag.cli.utils import echo_json, open_app


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status_command(ctx: click.Context, as_json: bool) -> None:
    """Show what is indexed and which providers are usable."""
    with open_app(ctx) as app:
        info = app.status()

    if as_json:
        echo_json(info)
        return

    click.echo(f"Database: {info['db_path']}")
    click.echo(f"Indexed items: {info['indexed_items']}")
    for dim, count in info["dimensions"].items():
        click.echo(f"  {dim}-dim: {count}")
    if info["predominant_source"]:
        click.echo(f"Predominant source: {info['predominant_source']}")
    click.echo(f"Cloud provider: {'configured' if info['cloud_configured'] else 'not configured'}")
    if info["rate_limited"]:
        click.echo(f"  Rate limited for {info['cooldown_seconds']}s")
    click.echo(f"Local provider: {'configured' if info['local_configured'] else 'not configured'}")

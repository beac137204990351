"""CLI utilities."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from shelfrag.app import ShelfRag
from shelfrag.config.loader import load_config
from shelfrag.core.errors import ShelfRagError
from shelfrag.library.repository import JsonLibraryRepository

AppFactory = Callable[..., ShelfRag]


def open_app(ctx: click.Context, library: Path | None = None) -> ShelfRag:
    """Build the ShelfRag host for the project root selected on the group.

    ``ctx.obj["app_factory"]`` replaces the ``ShelfRag`` constructor when
    set, which lets callers supply their own providers.

    Raises:
        click.ClickException: If the config or the library file is invalid.
    """
    root: Path = ctx.obj["root"]
    factory: AppFactory = ctx.obj.get("app_factory", ShelfRag)
    try:
        config = load_config(root)
        repository = JsonLibraryRepository(library) if library is not None else None
        return factory(config, repository, project_root=root)
    except ShelfRagError as e:
        raise click.ClickException(e.message) from e


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, default=str))

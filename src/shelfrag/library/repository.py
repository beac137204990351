"""Read-only access to the host's library."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog
from pydantic import TypeAdapter, ValidationError

from shelfrag.core.errors import LibraryError
from shelfrag.library.models import LibraryItem

log = structlog.get_logger()

_ITEMS_ADAPTER = TypeAdapter(list[LibraryItem])


@runtime_checkable
class LibraryRepository(Protocol):
    """What the core needs from a library: iterate items, resolve one by id."""

    def get_library_items(self) -> list[LibraryItem]: ...

    def get_item(self, item_id: int) -> LibraryItem | None: ...


class InMemoryLibraryRepository:
    """Items held in a dict; ``replace``/``remove`` simulate library edits."""

    def __init__(self, items: Iterable[LibraryItem] = ()) -> None:
        self._lock = threading.Lock()
        self._items: dict[int, LibraryItem] = {item.id: item for item in items}

    def get_library_items(self) -> list[LibraryItem]:
        with self._lock:
            return list(self._items.values())

    def get_item(self, item_id: int) -> LibraryItem | None:
        with self._lock:
            return self._items.get(item_id)

    def replace(self, item: LibraryItem) -> None:
        with self._lock:
            self._items[item.id] = item

    def remove(self, item_id: int) -> None:
        with self._lock:
            self._items.pop(item_id, None)


class JsonLibraryRepository(InMemoryLibraryRepository):
    """Library loaded from a JSON file.

    Accepts either a top-level list of items or ``{"items": [...]}``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(self._load(path))
        log.debug("library.loaded", path=str(path), items=len(self.get_library_items()))

    @staticmethod
    def _load(path: Path) -> list[LibraryItem]:
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise LibraryError.invalid_library(str(path), str(e)) from e
        try:
            stripped = raw.lstrip()
            if stripped.startswith(b"{"):
                wrapper = TypeAdapter(dict[str, list[LibraryItem]]).validate_json(raw)
                if "items" not in wrapper:
                    raise LibraryError.invalid_library(str(path), "missing 'items' key")
                return wrapper["items"]
            return _ITEMS_ADAPTER.validate_json(raw)
        except ValidationError as e:
            err = e.errors()[0]
            where = ".".join(str(loc) for loc in err["loc"])
            raise LibraryError.invalid_library(str(path), f"{where}: {err['msg']}") from e

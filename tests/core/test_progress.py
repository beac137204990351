"""Tests for core/progress.py module."""

from __future__ import annotations

import logging
import sys
from io import StringIO

from shelfrag.core.logging import ConsoleSuppressingFilter
from shelfrag.core.progress import (
    _is_tty,
    is_console_suppressed,
    pluralize,
    progress_callback,
    suppress_console_logs,
)


class TestPluralize:
    def test_singular(self) -> None:
        assert pluralize(1, "item") == "1 item"

    def test_plural(self) -> None:
        assert pluralize(3, "item") == "3 items"
        assert pluralize(0, "embedding") == "0 embeddings"

    def test_custom_plural(self) -> None:
        assert pluralize(2, "series", "series") == "2 series"


class TestSuppressConsoleLogs:
    def test_flag_set_only_inside_context(self) -> None:
        assert not is_console_suppressed()
        with suppress_console_logs():
            assert is_console_suppressed()
        assert not is_console_suppressed()

    def test_filter_drops_records_while_suppressed(self) -> None:
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        console_filter = ConsoleSuppressingFilter()

        assert console_filter.filter(record)
        with suppress_console_logs():
            assert not console_filter.filter(record)


class TestProgressCallback:
    def test_non_tty_yields_callable_that_accepts_updates(self) -> None:
        original = sys.stderr
        try:
            sys.stderr = StringIO()
            assert _is_tty() is False
            with progress_callback("Indexing") as on_progress:
                on_progress(1, 3, "Book One")
                on_progress(3, 3, "Book Three")
        finally:
            sys.stderr = original

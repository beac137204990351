"""Tests for the shelfrag command line.

Covers:
- index, search, status and purge commands
- JSON output
- Not-configured and empty-index messages
- Purge option validation and confirmation
"""

from __future__ import annotations

import json
import os
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner, Result
from conftest import FakeProvider

from shelfrag import __version__
from shelfrag.app import ShelfRag
from shelfrag.cli.main import cli


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path) -> Generator[None, None, None]:
    clean = {k: v for k, v in os.environ.items() if not k.upper().startswith("SHELFRAG__")}
    with (
        patch("shelfrag.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
        patch.dict(os.environ, clean, clear=True),
    ):
        yield


@pytest.fixture
def library_file(tmp_path: Path) -> Path:
    path = tmp_path / "library.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": 1,
                    "title": "Book One",
                    "author": "Ann",
                    "description": "a story about dragons",
                },
                {"id": 2, "title": "Book Two", "description": "a romance in high school"},
                {"id": 3, "title": "Book Three", "description": "dragons and knights in war"},
            ]
        )
    )
    return path


class Harness:
    """Runs the CLI against one project root with shared fake providers."""

    def __init__(self, root: Path, configured: bool = True) -> None:
        self.root = root
        # Shared across invocations so query and item vectors use one vocabulary.
        self.cloud = FakeProvider("gemini", 128, configured=configured)
        self.local = FakeProvider("local", 64, configured=configured)
        self.runner = CliRunner()

    def _factory(self, config: Any, repository: Any, *, project_root: Path) -> ShelfRag:
        return ShelfRag(
            config,
            repository,
            project_root=project_root,
            cloud=self.cloud,
            local=self.local,
            probe_network=False,
        )

    def invoke(self, *args: str, **kwargs: Any) -> Result:
        return self.runner.invoke(
            cli,
            ["--root", str(self.root), *args],
            obj={"app_factory": self._factory},
            **kwargs,
        )


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(tmp_path / "project")


class TestIndexCommand:
    def test_given_library_then_items_indexed(self, harness: Harness, library_file: Path) -> None:
        result = harness.invoke("index", "--library", str(library_file))

        assert result.exit_code == 0, result.output
        assert "Indexed 3 items with gemini (0 skipped, 0 failed)" in result.output
        assert (harness.root / ".shelfrag" / "vectors.db").exists()

    def test_given_json_flag_then_counters_printed(
        self, harness: Harness, library_file: Path
    ) -> None:
        harness.invoke("index", "--library", str(library_file))

        result = harness.invoke("index", "--library", str(library_file), "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output.strip().splitlines()[-1])
        assert data["indexed"] == 0
        assert data["skipped"] == 3

    def test_given_no_provider_then_error_exit(self, tmp_path: Path, library_file: Path) -> None:
        harness = Harness(tmp_path / "project", configured=False)

        result = harness.invoke("index", "--library", str(library_file))

        assert result.exit_code == 1
        assert "No embedding provider is configured" in result.output

    def test_given_missing_library_then_usage_error(self, harness: Harness, tmp_path: Path) -> None:
        result = harness.invoke("index", "--library", str(tmp_path / "absent.json"))

        assert result.exit_code == 2

    def test_given_invalid_library_then_error_exit(self, harness: Harness, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text('{"books": []}')

        result = harness.invoke("index", "--library", str(path))

        assert result.exit_code == 1
        assert "missing 'items' key" in result.output


class TestSearchCommand:
    def test_given_indexed_library_then_ranked_lines_printed(
        self, harness: Harness, library_file: Path
    ) -> None:
        harness.invoke("index", "--library", str(library_file))

        result = harness.invoke(
            "search", "dragon battles", "--library", str(library_file), "-n", "2"
        )

        assert result.exit_code == 0, result.output
        assert "1. " in result.output
        assert "Book One - Ann  [id 1]" in result.output
        assert "[id 3]" in result.output
        assert "[id 2]" not in result.output

    def test_given_empty_index_then_message(self, harness: Harness, library_file: Path) -> None:
        result = harness.invoke("search", "dragons", "--library", str(library_file))

        assert result.exit_code == 0
        assert "The library has not been indexed yet." in result.output

    def test_given_json_flag_then_outcome_printed(
        self, harness: Harness, library_file: Path
    ) -> None:
        result = harness.invoke("search", "dragons", "--library", str(library_file), "--json")

        data = json.loads(result.output)
        assert data == {"status": "empty_index", "retry_after_seconds": 0, "items": []}

    def test_given_zero_limit_then_rejected(self, harness: Harness, library_file: Path) -> None:
        result = harness.invoke("search", "dragons", "--library", str(library_file), "-n", "0")

        assert result.exit_code == 2


class TestStatusCommand:
    def test_given_indexed_library_then_counts_reported(
        self, harness: Harness, library_file: Path
    ) -> None:
        harness.invoke("index", "--library", str(library_file))

        result = harness.invoke("status", "--json")

        assert result.exit_code == 0, result.output
        info = json.loads(result.output)
        assert info["indexed_items"] == 3
        assert info["dimensions"] == {"128": 3}
        assert info["predominant_source"] == "gemini"
        assert info["cloud_configured"] is True
        assert info["rate_limited"] is False

    def test_given_text_mode_then_summary_lines(self, harness: Harness) -> None:
        result = harness.invoke("status")

        assert result.exit_code == 0, result.output
        assert "Indexed items: 0" in result.output
        assert "Cloud provider: configured" in result.output


class TestPurgeCommand:
    def test_given_all_with_yes_then_store_emptied(
        self, harness: Harness, library_file: Path
    ) -> None:
        harness.invoke("index", "--library", str(library_file))

        result = harness.invoke("purge", "--all", "--yes")
        status = json.loads(harness.invoke("status", "--json").output)

        assert result.exit_code == 0, result.output
        assert "Removed all embeddings" in result.output
        assert status["indexed_items"] == 0

    def test_given_source_then_only_that_source_removed(
        self, harness: Harness, library_file: Path
    ) -> None:
        harness.invoke("index", "--library", str(library_file))

        result = harness.invoke("purge", "--source", "local")

        assert result.exit_code == 0, result.output
        assert "Removed 0 embeddings from local" in result.output

    @pytest.mark.parametrize("args", [[], ["--source", "local", "--all"]])
    def test_given_ambiguous_options_then_usage_error(
        self, harness: Harness, args: list[str]
    ) -> None:
        result = harness.invoke("purge", *args)

        assert result.exit_code == 2
        assert "Pass exactly one of --source or --all" in result.output

    def test_given_declined_confirmation_then_nothing_removed(
        self, harness: Harness, library_file: Path
    ) -> None:
        harness.invoke("index", "--library", str(library_file))
        prompt = MagicMock()
        prompt.ask.return_value = False

        with patch("shelfrag.cli.purge.questionary.confirm", return_value=prompt):
            result = harness.invoke("purge", "--all")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert json.loads(harness.invoke("status", "--json").output)["indexed_items"] == 3


class TestGroup:
    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

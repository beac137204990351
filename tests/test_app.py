"""Tests for ShelfRag host wiring."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeProvider

from shelfrag.app import ShelfRag
from shelfrag.config.models import ShelfRagConfig
from shelfrag.library.models import LibraryItem
from shelfrag.library.repository import InMemoryLibraryRepository
from shelfrag.library.search import SearchStatus


def _app(
    root: Path,
    items: list[LibraryItem],
    cloud: FakeProvider,
    local: FakeProvider,
) -> ShelfRag:
    config = ShelfRagConfig.model_validate({"indexing": {"default_delay_ms": 0}})
    return ShelfRag(
        config,
        InMemoryLibraryRepository(items),
        project_root=root,
        cloud=cloud,
        local=local,
        probe_network=False,
    )


class TestShelfRag:
    def test_given_cloud_configured_then_index_and_search_use_it(
        self, tmp_path: Path, sample_items: list[LibraryItem]
    ) -> None:
        # Given
        cloud = FakeProvider("gemini", 128)
        local = FakeProvider("local", 32)

        with _app(tmp_path, sample_items, cloud, local) as app:
            # When
            result = app.index()
            outcome = app.search("dragon battles", limit=2)

            # Then
            assert result.indexed == 3
            assert result.source == "gemini"
            assert outcome.status is SearchStatus.OK
            assert sorted(item.id for item in outcome.items) == [1, 3]
            assert local.calls == []

        assert (tmp_path / ".shelfrag" / "vectors.db").exists()

    def test_given_no_cloud_then_local_fallback(
        self, tmp_path: Path, sample_items: list[LibraryItem]
    ) -> None:
        cloud = FakeProvider("gemini", 128, configured=False)
        local = FakeProvider("local", 32)

        with _app(tmp_path, sample_items, cloud, local) as app:
            result = app.index()
            status = app.status()
            items = app.run_search("dragons", limit=2)

        assert result.source == "local"
        assert status["dimensions"] == {"32": 3}
        assert status["predominant_source"] == "local"
        assert status["cloud_configured"] is False
        assert status["local_configured"] is True
        assert {item.id for item in items} == {1, 3}

    def test_given_reopened_project_then_embeddings_persist(
        self, tmp_path: Path, sample_items: list[LibraryItem]
    ) -> None:
        cloud = FakeProvider("gemini", 128)
        local = FakeProvider("local", 32)
        with _app(tmp_path, sample_items, cloud, local) as app:
            app.index()

        with _app(tmp_path, sample_items, cloud, local) as app:
            again = app.index()
            assert app.status()["indexed_items"] == 3

        assert (again.indexed, again.skipped) == (0, 3)

    def test_given_rate_limited_cloud_then_status_reports_cooldown(self, tmp_path: Path) -> None:
        cloud = FakeProvider("gemini", 128, cooldown=12)
        local = FakeProvider("local", 32, configured=False)

        with _app(tmp_path, [], cloud, local) as app:
            status = app.status()

        assert status["rate_limited"] is True
        assert status["cooldown_seconds"] == 12
        assert status["indexed_items"] == 0

    @pytest.mark.parametrize("configured", [True, False])
    def test_given_job_then_runs_in_background(
        self, tmp_path: Path, sample_items: list[LibraryItem], configured: bool
    ) -> None:
        cloud = FakeProvider("gemini", 128, configured=configured)
        local = FakeProvider("local", 32, configured=False)

        with _app(tmp_path, sample_items, cloud, local) as app:
            app.job.start()
            status = app.job.wait(timeout=5)

        assert status.last_result is not None
        assert status.last_result.not_configured is not configured

"""Tests for the background indexing job."""

from __future__ import annotations

import threading

import pytest
from conftest import FakeProvider, unit

from shelfrag.config.models import IndexingConfig
from shelfrag.library.indexing import IndexingResult, IndexLibrary
from shelfrag.library.job import IndexingJob, JobState
from shelfrag.library.repository import InMemoryLibraryRepository
from shelfrag.store.vector_store import VectorStore


class GatedEmbedder:
    """Blocks every embedding until ``gate`` opens."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.gate = threading.Event()

    def __call__(self, _text: str) -> list[float]:
        self.entered.set()
        assert self.gate.wait(timeout=5)
        return unit(4, 0)


class FailingRepository(InMemoryLibraryRepository):
    def get_library_items(self) -> list:
        raise RuntimeError("library offline")


@pytest.fixture
def gated() -> GatedEmbedder:
    return GatedEmbedder()


def _job(
    repository: InMemoryLibraryRepository, store: VectorStore, provider: FakeProvider
) -> IndexingJob:
    indexer = IndexLibrary(
        repository,
        provider,
        store,
        config=IndexingConfig(batch_size=1, default_delay_ms=0),
    )
    return IndexingJob(indexer)


class TestIndexingJob:
    def test_given_started_job_when_finished_then_completed(
        self, repository: InMemoryLibraryRepository, store: VectorStore
    ) -> None:
        # Given
        job = _job(repository, store, FakeProvider())
        completed: list[IndexingResult] = []
        job.set_on_complete(completed.append)

        # When
        assert job.start()
        status = job.wait(timeout=5)

        # Then
        assert status.state is JobState.COMPLETED
        assert status.last_result is not None
        assert status.last_result.indexed == 3
        assert status.progress == (3, 3, "Book Three")
        assert [r.indexed for r in completed] == [3]
        job.shutdown()

    def test_given_running_job_when_started_again_then_refused(
        self, repository: InMemoryLibraryRepository, store: VectorStore, gated: GatedEmbedder
    ) -> None:
        job = _job(repository, store, FakeProvider("local", 4, embed_fn=gated))

        assert job.start()
        assert gated.entered.wait(timeout=5)
        assert job.is_running
        assert job.start() is False

        gated.gate.set()
        assert job.wait(timeout=5).state is JobState.COMPLETED
        job.shutdown()

    def test_given_stop_mid_run_then_cancelled_with_work_kept(
        self, repository: InMemoryLibraryRepository, store: VectorStore, gated: GatedEmbedder
    ) -> None:
        # Given
        job = _job(repository, store, FakeProvider("local", 4, embed_fn=gated))
        job.start()
        assert gated.entered.wait(timeout=5)

        # When
        job.stop()
        gated.gate.set()
        status = job.wait(timeout=5)

        # Then
        assert status.state is JobState.CANCELLED
        assert status.last_result is not None
        assert status.last_result.indexed == 1
        assert store.indexed_item_ids() == {1}
        job.shutdown()

    def test_given_listener_then_receives_progress(
        self, repository: InMemoryLibraryRepository, store: VectorStore
    ) -> None:
        job = _job(repository, store, FakeProvider())
        seen: list[tuple[int, int, str]] = []
        listener = lambda *args: seen.append(args)  # noqa: E731
        job.add_progress_listener(listener)

        job.start()
        job.wait(timeout=5)

        assert [current for current, _, _ in seen] == [1, 2, 3]

        job.remove_progress_listener(listener)
        job.start(force=True)
        job.wait(timeout=5)
        assert len(seen) == 3
        job.shutdown()

    def test_given_repository_failure_then_failed_state(self, store: VectorStore) -> None:
        job = _job(FailingRepository(), store, FakeProvider())

        job.start()
        status = job.wait(timeout=5)

        assert status.state is JobState.FAILED
        assert status.last_error == "library offline"
        job.shutdown()

    def test_given_idle_job_then_shutdown_is_safe(
        self, repository: InMemoryLibraryRepository, store: VectorStore
    ) -> None:
        job = _job(repository, store, FakeProvider())

        job.stop()
        job.shutdown()

        assert job.status().state is JobState.IDLE
        assert not job.is_running

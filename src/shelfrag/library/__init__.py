"""Library indexing and search orchestration."""

from shelfrag.library.indexing import IndexingResult, IndexLibrary, ProgressCallback
from shelfrag.library.invalidation import (
    CacheInvalidationSink,
    CallbackInvalidationSink,
    NullInvalidationSink,
)
from shelfrag.library.job import IndexingJob, JobState, JobStatus
from shelfrag.library.models import LibraryItem
from shelfrag.library.repository import (
    InMemoryLibraryRepository,
    JsonLibraryRepository,
    LibraryRepository,
)
from shelfrag.library.search import SearchLibrary, SearchOutcome, SearchStatus

__all__ = [
    "CacheInvalidationSink",
    "CallbackInvalidationSink",
    "IndexLibrary",
    "IndexingJob",
    "IndexingResult",
    "InMemoryLibraryRepository",
    "JobState",
    "JobStatus",
    "JsonLibraryRepository",
    "LibraryItem",
    "LibraryRepository",
    "NullInvalidationSink",
    "ProgressCallback",
    "SearchLibrary",
    "SearchOutcome",
    "SearchStatus",
]

"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides deterministic embedding providers shared by the suites.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Generator, Sequence
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local shelfrag package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from shelfrag.core.errors import EmbeddingError  # noqa: E402
from shelfrag.embedding.base import EmbeddingProvider, EmbeddingResult  # noqa: E402
from shelfrag.library.models import LibraryItem  # noqa: E402
from shelfrag.library.repository import InMemoryLibraryRepository  # noqa: E402
from shelfrag.store.database import Database  # noqa: E402
from shelfrag.store.vector_store import VectorStore  # noqa: E402
from shelfrag.text.bm25 import tokenize  # noqa: E402


class BagOfWords:
    """Maps text to word-count vectors; each new word gets the next slot.

    Plural "s" is stripped from longer words so "dragons" and "dragon"
    share a slot, which gives the fake a little semantic sense.
    """

    def __init__(self, dimension: int = 128) -> None:
        self.dimension = dimension
        self._vocab: dict[str, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _stem(token: str) -> str:
        return token[:-1] if len(token) > 3 and token.endswith("s") else token

    def __call__(self, text: str) -> list[float]:
        vec = [0.0] * self.dimension
        with self._lock:
            for token in tokenize(text):
                slot = self._vocab.setdefault(self._stem(token), len(self._vocab))
                vec[slot % self.dimension] += 1.0
        return vec


class FakeProvider(EmbeddingProvider):
    """Deterministic in-process provider.

    ``fail_when`` returns the error to raise for a text, or None to embed it.
    """

    def __init__(
        self,
        source_id: str = "fake",
        dimension: int = 128,
        *,
        embed_fn: Callable[[str], Sequence[float]] | None = None,
        fail_when: Callable[[str], EmbeddingError | None] | None = None,
        configured: bool = True,
        cooldown: int = 0,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        super().__init__(sleep=sleep or (lambda _s: None))
        self.source_id = source_id
        self.dimension = dimension
        self.embed_fn = embed_fn or BagOfWords(dimension)
        self.fail_when = fail_when
        self.configured = configured
        self.cooldown = cooldown
        self.calls: list[str] = []

    @property
    def embedding_dimension(self) -> int:
        return self.dimension

    def is_configured(self) -> bool:
        return self.configured

    def is_rate_limited(self) -> bool:
        return self.cooldown > 0

    def remaining_cooldown_seconds(self) -> int:
        return self.cooldown

    def embed_or_raise(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if not self.configured:
            raise EmbeddingError.not_configured(self.source_id, "fake not configured")
        if self.fail_when is not None:
            error = self.fail_when(text)
            if error is not None:
                raise error
        return EmbeddingResult.of(self.embed_fn(text), self.source_id)


def unit(dimension: int, hot: int) -> list[float]:
    """One-hot vector."""
    vec = [0.0] * dimension
    vec[hot] = 1.0
    return vec


@pytest.fixture
def memory_db() -> Generator[Database, None, None]:
    db = Database(":memory:")
    yield db
    db.dispose()


@pytest.fixture
def store(memory_db: Database) -> Generator[VectorStore, None, None]:
    vector_store = VectorStore(memory_db)
    yield vector_store
    vector_store.close()


@pytest.fixture
def sample_items() -> list[LibraryItem]:
    return [
        LibraryItem(id=1, title="Book One", description="a story about dragons"),
        LibraryItem(id=2, title="Book Two", description="a romance in high school"),
        LibraryItem(id=3, title="Book Three", description="dragons and knights in war"),
    ]


@pytest.fixture
def repository(sample_items: list[LibraryItem]) -> InMemoryLibraryRepository:
    return InMemoryLibraryRepository(sample_items)

"""Sentence-aware text splitting for embedding input.

Long descriptions are cut into overlapping windows so nothing past the
model's context is silently lost. Window ends snap back to the nearest
sentence end (or space) within the last few dozen characters.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace

from shelfrag.config.constants import SENTENCE_LOOKBACK_CHARS

_SENTENCE_ENDERS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


@dataclass(frozen=True, slots=True)
class TextChunk:
    """A window of source text. Offsets are character positions, end exclusive."""

    content: str
    index: int
    total_chunks: int
    start_offset: int
    end_offset: int


def _last_sentence_end(text: str, lo: int, hi: int) -> int:
    """Position just past the last sentence ender in ``text[lo:hi]``, or -1."""
    window = text[lo:hi]
    best = -1
    for ender in _SENTENCE_ENDERS:
        idx = window.rfind(ender)
        if idx != -1:
            best = max(best, lo + idx + len(ender))
    return best


def truncate_at_boundary(text: str, budget: int) -> str:
    """Cut ``text`` to at most ``budget`` chars, preferring a sentence end, then a space."""
    if len(text) <= budget:
        return text
    if budget <= 0:
        return ""
    cut = _last_sentence_end(text, 0, budget + 1)
    if cut > 0:
        return text[:cut].rstrip()
    space = text.rfind(" ", 0, budget + 1)
    if space > 0:
        return text[:space].rstrip()
    return text[:budget]


class TextChunker:
    def __init__(
        self,
        max_chunk_size: int = 1800,
        overlap_size: int = 150,
        min_chunk_size: int = 100,
    ) -> None:
        if max_chunk_size < 1:
            raise ValueError(f"max_chunk_size must be >= 1, got {max_chunk_size}")
        if not 0 <= overlap_size < max_chunk_size:
            raise ValueError("overlap_size must be in [0, max_chunk_size)")
        if not 0 <= min_chunk_size <= max_chunk_size:
            raise ValueError("min_chunk_size must be in [0, max_chunk_size]")
        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size
        self.min_chunk_size = min_chunk_size

    def chunk(self, text: str) -> list[TextChunk]:
        """Split ``text`` into overlapping chunks.

        Text that fits in one window comes back as a single chunk. Otherwise
        consecutive windows overlap by ``overlap_size`` characters and the
        spans together cover the whole text. Chunks whose trimmed content is
        shorter than ``min_chunk_size`` are dropped, except the final one.
        """
        n = len(text)
        if n <= self.max_chunk_size:
            return [TextChunk(text, 0, 1, 0, n)]

        spans: list[tuple[int, int]] = []
        start = 0
        while start < n:
            end = min(start + self.max_chunk_size, n)
            if end < n:
                end = self._find_boundary(text, start, end)
            spans.append((start, end))
            if end >= n:
                break
            next_start = end - self.overlap_size
            if next_start <= start:
                next_start = end
            start = next_start

        chunks: list[TextChunk] = []
        for i, (lo, hi) in enumerate(spans):
            content = text[lo:hi].strip()
            is_last = i == len(spans) - 1
            if not content or (len(content) < self.min_chunk_size and not is_last):
                continue
            chunks.append(TextChunk(content, len(chunks), -1, lo, hi))

        return [replace(c, total_chunks=len(chunks)) for c in chunks]

    def _find_boundary(self, text: str, start: int, target_end: int) -> int:
        floor = start + self.min_chunk_size
        sentence_end = _last_sentence_end(
            text, max(target_end - SENTENCE_LOOKBACK_CHARS, start), target_end
        )
        if sentence_end > floor:
            return sentence_end
        space = text.rfind(" ", start, target_end)
        if space != -1 and space > floor:
            return space + 1
        return target_end

    # =========================================================================
    # Embedding text builders
    # =========================================================================

    @staticmethod
    def _metadata(title: str, author: str | None, genres: Sequence[str] | None) -> str:
        lines: list[str] = []
        if title and title.strip():
            lines.append(f"Title: {title.strip()}")
        if author and author.strip():
            lines.append(f"Author: {author.strip()}")
        genre_list = [g.strip() for g in genres or () if g and g.strip()]
        if genre_list:
            lines.append(f"Genres: {', '.join(genre_list)}")
        return "\n".join(lines)

    def build_primary_embedding_text(
        self,
        title: str,
        author: str | None = None,
        genres: Sequence[str] | None = None,
        description: str | None = None,
    ) -> str:
        """One text per item: metadata plus as much description as fits.

        The description is cut at a sentence end so the text stays within
        ``max_chunk_size``. Returns ``""`` when every field is blank.
        """
        metadata = self._metadata(title, author, genres)
        desc = (description or "").strip()
        if not desc:
            return metadata

        prefix = "\nDescription: " if metadata else "Description: "
        budget = self.max_chunk_size - len(metadata) - len(prefix)
        truncated = truncate_at_boundary(desc, budget)
        if not truncated:
            return metadata
        return f"{metadata}{prefix}{truncated}"

    def build_embedding_texts(
        self,
        title: str,
        author: str | None = None,
        genres: Sequence[str] | None = None,
        description: str | None = None,
    ) -> list[str]:
        """One text per description chunk, each carrying the shared metadata."""
        metadata = self._metadata(title, author, genres)
        desc = (description or "").strip()
        if not desc or len(desc) < self.max_chunk_size - len(metadata):
            single = self.build_primary_embedding_text(title, author, genres, desc)
            return [single] if single else []

        head = f"{metadata}\n" if metadata else ""
        return [
            f"{head}Description (Part {c.index + 1}/{c.total_chunks}): {c.content}"
            for c in self.chunk(desc)
        ]

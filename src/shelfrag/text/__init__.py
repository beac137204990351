"""Text preparation for embedding and lexical ranking."""

from shelfrag.text.bm25 import Bm25Reranker, tokenize
from shelfrag.text.chunker import TextChunk, TextChunker, truncate_at_boundary

__all__ = ["Bm25Reranker", "TextChunk", "TextChunker", "tokenize", "truncate_at_boundary"]

"""SQLModel definitions for persisted embeddings.

One row per (item, source). An item re-indexed by a different provider
keeps its older row until ``delete_by_source`` purges it; the row with the
latest ``indexed_at`` is authoritative.
"""

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, SQLModel


class EmbeddingRow(SQLModel, table=True):
    """Persisted embedding vector for one library item from one source."""

    __tablename__ = "item_embeddings"

    item_id: int = Field(primary_key=True)
    embedding_source: str = Field(primary_key=True, index=True)  # "gemini", "local", ...
    embedding: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    embedding_dim: int = Field(index=True)
    indexed_at: int = Field(index=True)  # epoch ms

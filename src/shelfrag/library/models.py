"""Library items as seen by the indexer and search."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LibraryItem(BaseModel):
    """One indexable entry (book, series, album...) from the host library.

    ``id`` is the stable key embeddings are stored under.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    title: str = ""
    author: str | None = None
    artist: str | None = None
    genres: list[str] = Field(default_factory=list)
    description: str | None = None

    @field_validator("genres", mode="before")
    @classmethod
    def split_genre_string(cls, v: object) -> object:
        # Hosts often store genres as one comma-separated string.
        if isinstance(v, str):
            return [g.strip() for g in v.split(",") if g.strip()]
        if v is None:
            return []
        return v

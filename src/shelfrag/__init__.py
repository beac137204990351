"""ShelfRag - local semantic search over a media library."""

__version__ = "0.1.0"

"""Indexing engine (extraction + chunking + embeddings + sqlite-vec store)."""

__all__ = [
    "chunking",
    "cleaner",
    "config",
    "embeddings",
    "exceptions",
    "extractor",
    "indexer",
    "session",
    "store",
]

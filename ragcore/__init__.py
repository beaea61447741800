"""Document indexing and retrieval core: chunk, embed, store, search."""

__version__ = "0.1.0"

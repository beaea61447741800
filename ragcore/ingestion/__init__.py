"""Document ingestion: loading and chunking."""

from ragcore.ingestion.chunker import DocumentChunker, looks_like_markdown
from ragcore.ingestion.loader import DocumentLoader

__all__ = ["DocumentChunker", "DocumentLoader", "looks_like_markdown"]

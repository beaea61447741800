"""Data models for the retrieval core."""

from ragcore.models.chunk import Document, TextChunk, estimate_tokens
from ragcore.models.progress import BuildProgress, BuildStatus
from ragcore.models.query_result import (
    FilteredResults,
    QueryResult,
    RetrievedChunkInfo,
)
from ragcore.models.record import (
    RetrievedCandidate,
    StoredChunkRecord,
    VectorStoreStats,
)
from ragcore.models.section import Section

__all__ = [
    "BuildProgress",
    "BuildStatus",
    "Document",
    "FilteredResults",
    "QueryResult",
    "RetrievedCandidate",
    "RetrievedChunkInfo",
    "Section",
    "StoredChunkRecord",
    "TextChunk",
    "VectorStoreStats",
    "estimate_tokens",
]

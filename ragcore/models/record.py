"""Stored record and search candidate models."""

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.chunk import TextChunk


class StoredChunkRecord(BaseModel):
    """A persisted chunk together with its embedding vector."""

    model_config = ConfigDict(frozen=True)

    id: int
    chunk: TextChunk
    embedding: list[float]
    created_at: int  # epoch millis

    @property
    def dimension(self) -> int:
        return len(self.embedding)


class RetrievedCandidate(BaseModel):
    """A stored record scored against a query embedding."""

    model_config = ConfigDict(frozen=True)

    record: StoredChunkRecord
    similarity: float

    @property
    def text(self) -> str:
        return self.record.chunk.text

    @property
    def source_file(self) -> str:
        return self.record.chunk.source_file

    @property
    def chunk_index(self) -> int:
        return self.record.chunk.chunk_index

    @property
    def heading_context(self) -> str:
        return self.record.chunk.heading_context


class VectorStoreStats(BaseModel):
    """Summary counts for a vector store."""

    total_chunks: int = 0
    distinct_sources: int = 0
    files: list[str] = Field(default_factory=list)

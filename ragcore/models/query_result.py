"""Query result data models."""

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from ragcore.models.record import RetrievedCandidate


class RetrievedChunkInfo(BaseModel):
    """A retrieved chunk without its embedding, for callers and serialization."""

    text: str
    source_file: str
    chunk_index: int
    heading_context: str = ""
    similarity: float

    @classmethod
    def from_candidate(cls, candidate: RetrievedCandidate) -> "RetrievedChunkInfo":
        return cls(
            text=candidate.text,
            source_file=candidate.source_file,
            chunk_index=candidate.chunk_index,
            heading_context=candidate.heading_context,
            similarity=candidate.similarity,
        )


class FilteredResults(BaseModel):
    """Candidates partitioned by relevance, with a quality assessment.

    An empty ``relevant`` list is a normal outcome, not an error.
    """

    relevant: list[RetrievedCandidate] = Field(default_factory=list)
    filtered_out: list[RetrievedCandidate] = Field(default_factory=list)
    quality_score: float = 0.0
    suggestion: str = ""


class QueryResult(BaseModel):
    """A complete query result: question, sources, and answer."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    question: str
    answer: str | None = None
    retrieved_chunks: list[RetrievedChunkInfo] = Field(default_factory=list)
    filtered_out: list[RetrievedChunkInfo] = Field(default_factory=list)
    context_used: str = ""
    quality_score: float | None = None
    suggestion: str = ""
    mode: str = "rag"
    timestamp: datetime = Field(default_factory=datetime.now)

"""Tests for data models."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from ragcore.models import (
    BuildProgress,
    BuildStatus,
    Document,
    QueryResult,
    RetrievedCandidate,
    RetrievedChunkInfo,
    StoredChunkRecord,
    TextChunk,
    VectorStoreStats,
)


def _record() -> StoredChunkRecord:
    return StoredChunkRecord(
        id=7,
        chunk=TextChunk(
            text="Muscle tissue contracts.",
            source_file="biology.md",
            chunk_index=4,
            start_position=120,
            end_position=144,
            heading_context="Basics > Tissues > Muscle tissue",
        ),
        embedding=[0.1, 0.2, 0.3],
        created_at=1_700_000_000_000,
    )


class TestTextChunk:
    def test_defaults(self) -> None:
        chunk = TextChunk(text="Hello.", source_file="a.md")
        assert chunk.chunk_index == 0
        assert chunk.heading_context == ""

    def test_serialization(self) -> None:
        chunk = _record().chunk
        restored = TextChunk(**chunk.model_dump())
        assert restored == chunk

    def test_document(self) -> None:
        doc = Document(source_id="a.md", text="Body")
        assert doc.source_id == "a.md"


class TestStoredChunkRecord:
    def test_dimension(self) -> None:
        assert _record().dimension == 3

    def test_frozen(self) -> None:
        record = _record()
        with pytest.raises(ValidationError):
            record.id = 8  # type: ignore[misc]


class TestRetrievedCandidate:
    def test_shortcuts(self) -> None:
        candidate = RetrievedCandidate(record=_record(), similarity=0.82)
        assert candidate.text == "Muscle tissue contracts."
        assert candidate.source_file == "biology.md"
        assert candidate.chunk_index == 4
        assert candidate.heading_context == "Basics > Tissues > Muscle tissue"

    def test_chunk_info_drops_embedding(self) -> None:
        info = RetrievedChunkInfo.from_candidate(
            RetrievedCandidate(record=_record(), similarity=0.82)
        )
        data = info.model_dump()
        assert "embedding" not in data
        assert data["similarity"] == 0.82
        assert data["source_file"] == "biology.md"


class TestQueryResult:
    def test_defaults(self) -> None:
        result = QueryResult(question="What contracts?")
        assert result.id
        assert result.answer is None
        assert result.retrieved_chunks == []
        assert result.quality_score is None
        assert result.mode == "rag"
        assert isinstance(result.timestamp, datetime)

    def test_unique_ids(self) -> None:
        assert QueryResult(question="a").id != QueryResult(question="a").id


class TestVectorStoreStats:
    def test_defaults_not_shared(self) -> None:
        first = VectorStoreStats()
        first.files.append("a.md")
        assert VectorStoreStats().files == []


class TestBuildStatus:
    def test_terminal_states(self) -> None:
        assert BuildStatus.COMPLETED.is_terminal
        assert BuildStatus.ERROR.is_terminal
        assert not BuildStatus.EMBEDDING.is_terminal

    def test_active_states(self) -> None:
        assert BuildStatus.SAVING.is_active
        assert not BuildStatus.IDLE.is_active
        assert not BuildStatus.COMPLETED.is_active


class TestBuildProgress:
    def test_defaults(self) -> None:
        progress = BuildProgress()
        assert progress.status is BuildStatus.IDLE
        assert progress.current_step == "Waiting to start..."
        assert progress.error_message is None

    def test_camel_case_aliases(self) -> None:
        progress = BuildProgress(progressPercent=40, currentStep="Working")
        assert progress.progress_percent == 40
        assert progress.model_dump(by_alias=True)["currentStep"] == "Working"

    def test_formatting(self) -> None:
        progress = BuildProgress(elapsed_seconds=125, estimated_remaining_seconds=0)
        assert progress.formatted_elapsed() == "02:05"
        assert progress.formatted_eta() == "calculating..."

    def test_progress_bar_bounds(self) -> None:
        assert BuildProgress(progress_percent=0).progress_bar() == "[" + "░" * 20 + "] 0%"
        assert BuildProgress(progress_percent=100).progress_bar() == "[" + "█" * 20 + "] 100%"

    def test_console_output(self) -> None:
        output = BuildProgress(status=BuildStatus.COMPLETED, progress_percent=100).to_console_output()
        assert "Status: completed" in output
        assert "ERROR" not in output

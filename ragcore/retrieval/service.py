"""Retrieval service: builds the index and answers similarity queries.

Build:  documents -> chunker -> embedding client -> vector store
Query:  question -> embedding client -> vector store search
        -> relevance filter -> context -> answer generator
"""

import logging
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from ragcore.config import AppConfig
from ragcore.embedding.client import EmbeddingClient, OllamaEmbeddingClient
from ragcore.exceptions import (
    DuplicateSourceError,
    OperationCancelledError,
    ServiceUnavailableError,
)
from ragcore.ingestion.chunker import DocumentChunker
from ragcore.ingestion.loader import DocumentLoader
from ragcore.models.chunk import TextChunk
from ragcore.models.progress import BuildProgress
from ragcore.models.query_result import QueryResult, RetrievedChunkInfo
from ragcore.models.record import RetrievedCandidate, VectorStoreStats
from ragcore.progress import BuildProgressTracker, BuildSession
from ragcore.retrieval.relevance import RelevanceFilter
from ragcore.storage.vector_store import VectorStore
from ragcore.vectors import NORMALIZATION_METHODS, normalize

logger = logging.getLogger(__name__)

NO_RELEVANT_ANSWER = "No relevant information found in the knowledge base."
CONTEXT_SEPARATOR = "\n\n---\n\n"
DEFAULT_SAVE_BATCH_SIZE = 100


class AnswerGenerator(Protocol):
    """Turns a question and retrieved context into an answer."""

    def generate(self, question: str, context: str) -> str:
        ...


def format_context(candidates: Sequence[RetrievedCandidate]) -> str:
    """Join retrieved chunks into one context block with source attribution."""
    return CONTEXT_SEPARATOR.join(
        f"[Source {index}] (from {candidate.source_file}, "
        f"similarity: {candidate.similarity:.3f})\n{candidate.text}"
        for index, candidate in enumerate(candidates, start=1)
    )


class RetrievalService:
    """Coordinates chunking, embedding, storage and search.

    Args:
        embedding_client: Produces embeddings for chunks and queries.
        vector_store: Stores chunk records and runs similarity search.
        chunker: Splits documents; defaults to ``DocumentChunker()``.
        relevance_filter: Scores search results; defaults to threshold 0.25.
        tracker: Receives build progress; defaults to a private tracker.
        answer_generator: Optional collaborator producing answers.
        loader: Reads documents from disk for ``build_from_directory``.
        batch_size: Texts per embedding request.
        save_batch_size: Records per insert transaction.
        normalization: "none", "l2" or "minmax", applied to chunk and query
            vectors alike.
        top_k: Default number of search results.
        use_relevance_filter: Whether ``query`` filters by default.
        use_heading_boost: Whether ``query`` reranks by heading by default.
        heading_boost: Boost per matching heading keyword.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_store: VectorStore,
        chunker: DocumentChunker | None = None,
        relevance_filter: RelevanceFilter | None = None,
        tracker: BuildProgressTracker | None = None,
        answer_generator: AnswerGenerator | None = None,
        loader: DocumentLoader | None = None,
        batch_size: int = 16,
        save_batch_size: int = DEFAULT_SAVE_BATCH_SIZE,
        normalization: str = "none",
        top_k: int = 5,
        use_relevance_filter: bool = True,
        use_heading_boost: bool = False,
        heading_boost: float = 0.15,
    ) -> None:
        if normalization not in NORMALIZATION_METHODS:
            raise ValueError(f"Unknown normalization method: {normalization}")
        if batch_size < 1 or save_batch_size < 1:
            raise ValueError("Batch sizes must be positive")

        self._embedding_client = embedding_client
        self._vector_store = vector_store
        self._chunker = chunker or DocumentChunker()
        self._relevance_filter = relevance_filter or RelevanceFilter()
        self._tracker = tracker or BuildProgressTracker()
        self._answer_generator = answer_generator
        self._loader = loader or DocumentLoader()
        self._batch_size = batch_size
        self._save_batch_size = save_batch_size
        self._normalization = normalization
        self._top_k = top_k
        self._use_relevance_filter = use_relevance_filter
        self._use_heading_boost = use_heading_boost
        self._heading_boost = heading_boost
        self._documents_dir: str | None = None
        self._file_pattern = "*.md"

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        answer_generator: AnswerGenerator | None = None,
        tracker: BuildProgressTracker | None = None,
    ) -> "RetrievalService":
        """Wire up the default components from configuration."""
        service = cls(
            embedding_client=OllamaEmbeddingClient.from_config(config.embedding),
            vector_store=VectorStore(config.storage.sqlite_path),
            chunker=DocumentChunker(config.chunking),
            relevance_filter=RelevanceFilter(config.retrieval.min_similarity),
            tracker=tracker,
            answer_generator=answer_generator,
            batch_size=config.embedding.batch_size,
            normalization=config.retrieval.normalization,
            top_k=config.retrieval.top_k,
            use_relevance_filter=config.retrieval.use_relevance_filter,
            use_heading_boost=config.retrieval.use_heading_boost,
            heading_boost=config.retrieval.heading_boost,
        )
        service._documents_dir = config.storage.documents_dir
        service._file_pattern = config.storage.file_pattern
        return service

    @property
    def tracker(self) -> BuildProgressTracker:
        return self._tracker

    @property
    def vector_store(self) -> VectorStore:
        return self._vector_store

    # ── Build ───────────────────────────────────────────────────────────────

    def build(
        self,
        documents: Mapping[str, str],
        clear_existing: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> BuildProgress:
        """Index documents, reporting every phase to the progress tracker.

        Chunks saved before a failure stay in the store; call ``clear()``
        (or build with ``clear_existing=True``) for a clean slate.

        Args:
            documents: Mapping of file name to text.
            clear_existing: Wipe the store before indexing.
            cancel_event: When set, the build stops before the next
                embedding batch.

        Returns:
            The final progress snapshot.

        Raises:
            BuildInProgressError: If another build is running.
            Exception: Whatever stopped the build, after it was recorded in
                the tracker.
        """
        session = self._tracker.start_building()
        return self._run_build(session, dict(documents), clear_existing, cancel_event)

    def build_from_directory(
        self,
        directory: str | Path | None = None,
        pattern: str | None = None,
        clear_existing: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> BuildProgress:
        """Load documents from a directory and index them."""
        session = self._tracker.start_building()
        try:
            documents = self._load(session, directory, pattern)
        except Exception as exc:
            self._fail(session, exc)
            raise
        return self._run_build(session, documents, clear_existing, cancel_event)

    def start_background_build(
        self,
        documents: Mapping[str, str] | None = None,
        directory: str | Path | None = None,
        clear_existing: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> tuple[BuildSession, threading.Thread]:
        """Run a build on a worker thread and return immediately.

        Documents are taken from ``documents`` if given, otherwise loaded
        from ``directory`` (or the configured documents directory). Progress
        is observed through the returned session or the tracker.

        Raises:
            BuildInProgressError: If another build is running.
        """
        session = self._tracker.start_building()

        def work() -> None:
            try:
                docs = (
                    dict(documents)
                    if documents is not None
                    else self._load(session, directory, None)
                )
                self._run_build(session, docs, clear_existing, cancel_event)
            except Exception as exc:
                # Already recorded on the session by _run_build
                if not session.is_finished:
                    self._fail(session, exc)

        thread = threading.Thread(target=work, name=f"build-{session.build_id[:8]}", daemon=True)
        thread.start()
        return session, thread

    def _load(
        self, session: BuildSession, directory: str | Path | None, pattern: str | None
    ) -> dict[str, str]:
        target = directory or self._documents_dir
        if target is None:
            raise ValueError("No documents directory given or configured")
        session.log(f"Loading documents from {target}")
        return self._loader.load_directory(
            target,
            pattern or self._file_pattern,
            on_progress=session.update_documents_loaded,
        )

    def _run_build(
        self,
        session: BuildSession,
        documents: dict[str, str],
        clear_existing: bool,
        cancel_event: threading.Event | None,
    ) -> BuildProgress:
        try:
            logger.info("Building knowledge base from %d documents", len(documents))

            if not self._embedding_client.is_available():
                raise ServiceUnavailableError("Embedding service is not available")
            session.log("Embedding service verified")

            self._prepare_store(session, documents, clear_existing)

            total_documents = len(documents)
            session.update_documents_loaded(total_documents, total_documents)
            session.log(f"Loaded {total_documents} documents")

            chunks = self._chunk(session, documents)
            embeddings = self._embed(session, chunks, cancel_event)
            self._save(session, chunks, embeddings)

            stats = self._vector_store.stats()
            session.complete()
            session.log(
                f"Knowledge base built: {stats.total_chunks} chunks "
                f"from {stats.distinct_sources} sources"
            )
            logger.info("Knowledge base built successfully: %s", stats)
        except Exception as exc:
            self._fail(session, exc)
            raise

        final = session.progress
        logger.info("\n%s", final.to_console_output())
        return final

    def _fail(self, session: BuildSession, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        logger.exception("Error building knowledge base: %s", message)
        session.error(message)

    def _prepare_store(
        self, session: BuildSession, documents: Mapping[str, str], clear_existing: bool
    ) -> None:
        if clear_existing:
            session.log("Clearing previous index")
            self._vector_store.clear()
            return

        already_indexed = sorted(set(self._vector_store.sources()) & set(documents))
        if already_indexed:
            raise DuplicateSourceError(already_indexed)

    def _chunk(self, session: BuildSession, documents: Mapping[str, str]) -> list[TextChunk]:
        session.start_chunking(len(documents))
        chunks: list[TextChunk] = []
        for processed, (filename, text) in enumerate(documents.items(), start=1):
            chunks.extend(self._chunker.chunk(text, filename))
            session.update_chunking(processed, len(documents))

        session.log(f"Created {len(chunks)} chunks")
        logger.info("Created %d chunks", len(chunks))
        return chunks

    def _embed(
        self,
        session: BuildSession,
        chunks: Sequence[TextChunk],
        cancel_event: threading.Event | None,
    ) -> list[list[float]]:
        total = len(chunks)
        session.start_embedding(total)
        session.log(f"Generating embeddings for {total} chunks")

        embeddings: list[list[float]] = []
        for batch_start in range(0, total, self._batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(
                    f"Build cancelled after {batch_start}/{total} chunks"
                )

            batch = chunks[batch_start:batch_start + self._batch_size]
            texts = [chunk.text for chunk in batch]
            vectors = self._embedding_client.embed_batch(texts)
            if len(vectors) != len(texts):
                logger.warning(
                    "Batch at chunk %d returned %d vectors for %d texts, embedding one by one",
                    batch_start,
                    len(vectors),
                    len(texts),
                )
                vectors = self._embedding_client.embed_each(texts)

            embeddings.extend(normalize(vector, self._normalization) for vector in vectors)
            session.update_embedding(len(embeddings), total)
            logger.debug("Embedded chunks %d/%d", len(embeddings), total)

        return embeddings

    def _save(
        self,
        session: BuildSession,
        chunks: Sequence[TextChunk],
        embeddings: Sequence[list[float]],
    ) -> None:
        total = len(chunks)
        session.start_saving(total)
        session.log(f"Saving {total} chunks to database")

        pairs = list(zip(chunks, embeddings))
        for batch_start in range(0, total, self._save_batch_size):
            batch = pairs[batch_start:batch_start + self._save_batch_size]
            self._vector_store.save_batch(batch)
            session.update_saving(batch_start + len(batch), total)

    # ── Query ───────────────────────────────────────────────────────────────

    def retrieve(self, query: str, top_k: int | None = None) -> list[RetrievedCandidate]:
        """Embed a query and return the most similar stored chunks."""
        top_k = self._top_k if top_k is None else top_k
        logger.info("Retrieving top %d chunks for query: %s", top_k, query[:100])

        query_embedding = normalize(self._embedding_client.embed(query), self._normalization)
        results = self._vector_store.search(query_embedding, top_k)

        if results:
            logger.info(
                "Retrieved %d chunks, top similarity: %.3f",
                len(results),
                results[0].similarity,
            )
        return results

    def query(
        self,
        question: str,
        top_k: int | None = None,
        use_filter: bool | None = None,
        heading_boost: bool | None = None,
    ) -> QueryResult:
        """Retrieve context for a question and, if configured, answer it.

        Args:
            question: The user's question.
            top_k: Number of chunks to retrieve.
            use_filter: Apply the relevance filter (defaults to config).
            heading_boost: Rerank by heading keywords (defaults to config).

        Returns:
            QueryResult with per-chunk similarity and source attribution.
            ``answer`` is None when no answer generator is configured.
        """
        use_filter = self._use_relevance_filter if use_filter is None else use_filter
        heading_boost = self._use_heading_boost if heading_boost is None else heading_boost

        candidates = self.retrieve(question, top_k)
        if heading_boost:
            candidates = self._relevance_filter.rerank_with_heading_boost(
                candidates, question, self._heading_boost
            )

        filtered_out: list[RetrievedCandidate] = []
        quality_score: float | None = None
        suggestion = ""
        if use_filter:
            filtered = self._relevance_filter.filter_and_rank(candidates, question)
            candidates = filtered.relevant
            filtered_out = filtered.filtered_out
            quality_score = filtered.quality_score
            suggestion = filtered.suggestion

        result = QueryResult(
            question=question,
            retrieved_chunks=[RetrievedChunkInfo.from_candidate(c) for c in candidates],
            filtered_out=[RetrievedChunkInfo.from_candidate(c) for c in filtered_out],
            quality_score=quality_score,
            suggestion=suggestion,
        )

        if not candidates:
            logger.warning("No relevant chunks found for query")
            result.answer = NO_RELEVANT_ANSWER
            return result

        result.context_used = format_context(candidates)
        if self._answer_generator is not None:
            result.answer = self._answer_generator.generate(question, result.context_used)
        return result

    # ── Maintenance ─────────────────────────────────────────────────────────

    def clear(self) -> int:
        return self._vector_store.clear()

    def stats(self) -> VectorStoreStats:
        return self._vector_store.stats()

    def close(self) -> None:
        """Release the embedding client; interrupts pending retry delays."""
        self._embedding_client.close()

    def is_ready(self) -> bool:
        """True when chunks are indexed and the embedding service answers."""
        total_chunks = self._vector_store.count()
        if total_chunks == 0:
            logger.warning("Vector store is empty")
            return False
        if not self._embedding_client.is_available():
            logger.warning("Embedding service is not available")
            return False
        logger.info("Retrieval service is ready (%d chunks indexed)", total_chunks)
        return True

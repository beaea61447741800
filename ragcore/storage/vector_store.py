"""SQLite-backed vector store with linear-scan cosine search."""

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from ragcore.exceptions import DimensionMismatchError
from ragcore.models.chunk import TextChunk
from ragcore.models.record import RetrievedCandidate, StoredChunkRecord, VectorStoreStats
from ragcore.storage.database import get_connection, initialize_database
from ragcore.vectors import cosine_similarities

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = (
    "id, chunk_text, source_file, chunk_index, start_position, end_position, "
    "embedding, heading_context, created_at"
)


def _row_to_record(row: sqlite3.Row) -> StoredChunkRecord:
    return StoredChunkRecord(
        id=row["id"],
        chunk=TextChunk(
            text=row["chunk_text"],
            source_file=row["source_file"],
            chunk_index=row["chunk_index"],
            start_position=row["start_position"],
            end_position=row["end_position"],
            heading_context=row["heading_context"] or "",
        ),
        embedding=json.loads(row["embedding"]),
        created_at=row["created_at"],
    )


class VectorStore:
    """Persists chunks with their embeddings and answers similarity queries.

    Records are append-only: they are inserted in batches and removed only
    by ``clear()``. All records share one embedding dimension, fixed by the
    first insert after the store was empty.

    Writes are serialised by a lock and each batch is one transaction;
    reads open their own connection, so WAL mode lets searches proceed
    while a batch is being written.

    Args:
        db_path: Path to the SQLite database file. Created if missing.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._write_lock = threading.Lock()
        initialize_database(self._db_path)
        logger.info("Vector store initialized at %s", self._db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def save(self, chunk: TextChunk, embedding: Sequence[float]) -> None:
        """Save a single chunk with its embedding."""
        self.save_batch([(chunk, embedding)])
        logger.debug("Saved chunk %d from %s", chunk.chunk_index, chunk.source_file)

    def save_batch(self, items: Sequence[tuple[TextChunk, Sequence[float]]]) -> int:
        """Insert chunks with their embeddings in one transaction.

        Args:
            items: (chunk, embedding) pairs.

        Returns:
            Number of records inserted.

        Raises:
            DimensionMismatchError: If the embeddings disagree with each other
                or with the vectors already stored. Nothing is inserted.
            ValueError: If an embedding is empty.
        """
        if not items:
            return 0

        dimension = len(items[0][1])
        if dimension == 0:
            raise ValueError("Cannot store an empty embedding")
        for _, embedding in items:
            if len(embedding) != dimension:
                raise DimensionMismatchError(dimension, len(embedding))

        created_at = int(time.time() * 1000)
        rows = [
            (
                chunk.text,
                chunk.source_file,
                chunk.chunk_index,
                chunk.start_position,
                chunk.end_position,
                json.dumps([float(x) for x in embedding]),
                chunk.heading_context,
                created_at,
            )
            for chunk, embedding in items
        ]

        with self._write_lock:
            conn = get_connection(self._db_path)
            try:
                stored = self._stored_dimension(conn)
                if stored is not None and stored != dimension:
                    raise DimensionMismatchError(stored, dimension)
                with conn:
                    conn.executemany(
                        """
                        INSERT INTO documents (
                            chunk_text, source_file, chunk_index, start_position,
                            end_position, embedding, heading_context, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        rows,
                    )
            finally:
                conn.close()

        logger.info("Batch saved %d chunks", len(rows))
        return len(rows)

    def search(
        self, query_embedding: Sequence[float], top_k: int = 5
    ) -> list[RetrievedCandidate]:
        """Find the stored chunks most similar to a query embedding.

        Scans every record, scores it by cosine similarity and keeps the
        ``top_k`` best.

        Args:
            query_embedding: Embedding of the search query.
            top_k: Maximum number of results.

        Returns:
            Candidates sorted by descending similarity, at most
            ``min(top_k, record count)`` of them.

        Raises:
            DimensionMismatchError: If the query dimension differs from the
                stored dimension.
        """
        if top_k <= 0:
            return []

        records = self.all_records()
        if not records:
            logger.debug("Search on empty store")
            return []

        dimension = records[0].dimension
        if len(query_embedding) != dimension:
            raise DimensionMismatchError(dimension, len(query_embedding))

        matrix = np.array([record.embedding for record in records], dtype=np.float64)
        scores = cosine_similarities(query_embedding, matrix)
        order = np.argsort(-scores, kind="stable")[:top_k]

        results = [
            RetrievedCandidate(record=records[i], similarity=float(scores[i])) for i in order
        ]
        logger.debug("Search returned %d results", len(results))
        return results

    def all_records(self) -> list[StoredChunkRecord]:
        """Return every stored record in insertion order."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM documents ORDER BY id"
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def records_for_source(self, source_file: str) -> list[StoredChunkRecord]:
        """Return the records of one source file ordered by chunk index."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM documents "
                "WHERE source_file = ? ORDER BY chunk_index, id",
                (source_file,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def sources(self) -> list[str]:
        """Distinct source file names, sorted."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT DISTINCT source_file FROM documents ORDER BY source_file"
            ).fetchall()
        finally:
            conn.close()
        return [row["source_file"] for row in rows]

    def dimension(self) -> int | None:
        """Embedding dimension of the stored records, or None when empty."""
        conn = get_connection(self._db_path)
        try:
            return self._stored_dimension(conn)
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_connection(self._db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        finally:
            conn.close()

    def clear(self) -> int:
        """Delete every record. Returns the number of records removed."""
        with self._write_lock:
            conn = get_connection(self._db_path)
            try:
                with conn:
                    deleted = conn.execute("DELETE FROM documents").rowcount
            finally:
                conn.close()
        logger.info("Vector store cleared (%d records removed)", deleted)
        return deleted

    def stats(self) -> VectorStoreStats:
        files = self.sources()
        return VectorStoreStats(
            total_chunks=self.count(),
            distinct_sources=len(files),
            files=files,
        )

    @staticmethod
    def _stored_dimension(conn: sqlite3.Connection) -> int | None:
        row = conn.execute("SELECT embedding FROM documents LIMIT 1").fetchone()
        if row is None:
            return None
        return len(json.loads(row["embedding"]))

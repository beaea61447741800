"""Persistence: SQLite schema and the vector store."""

from ragcore.storage.database import get_connection, initialize_database
from ragcore.storage.vector_store import VectorStore

__all__ = ["VectorStore", "get_connection", "initialize_database"]

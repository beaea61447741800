"""Configuration loader for the knowledge base retrieval core."""

import os
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from ragcore.exceptions import ConfigError


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "Knowledge Base RAG"
    version: str = "0.1.0"
    log_level: str = "INFO"


class EmbeddingConfig(BaseModel):
    """Embedding service configuration."""

    base_url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    timeout: float = 300.0
    connect_timeout: float = 30.0
    batch_size: int = 16
    max_attempts: int = 3
    retry_delay: float = 2.0


class ChunkingConfig(BaseModel):
    """Text chunking configuration.

    Sizes are token estimates (``ceil(chars / 4)``). Bounds are checked by
    the chunker when it is constructed.
    """

    target_chunk_size: int = 750
    overlap_size: int = 75
    markdown_aware: bool = True


class RetrievalConfig(BaseModel):
    """Query-time retrieval configuration."""

    top_k: int = 5
    min_similarity: float = 0.25
    use_relevance_filter: bool = True
    use_heading_boost: bool = False
    heading_boost: float = 0.15
    normalization: Literal["none", "l2", "minmax"] = "none"


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    sqlite_path: str = "./db/documents.db"
    documents_dir: str = "./data/documents"
    file_pattern: str = "*.md"


class AppConfig(BaseModel):
    """Root application configuration."""

    app: AppInfo = Field(default_factory=AppInfo)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def load_config(config_path: str | Path = "config.yaml") -> AppConfig:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Fully populated AppConfig instance.

    Raises:
        ConfigError: If the YAML file contains invalid values.
    """
    load_dotenv()

    yaml_data: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            yaml_data = yaml.safe_load(f) or {}

    try:
        config = AppConfig(**yaml_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_file}: {exc}") from exc

    # Environment overrides
    ollama_host = os.getenv("OLLAMA_HOST")
    if ollama_host:
        config.embedding.base_url = ollama_host
    log_level = os.getenv("RAG_LOG_LEVEL")
    if log_level:
        config.app.log_level = log_level.upper()

    return config

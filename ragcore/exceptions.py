"""Exception hierarchy for the retrieval core."""


class RagError(Exception):
    """Base class for all retrieval core errors."""


class ConfigError(RagError, ValueError):
    """Invalid configuration values (chunk sizes, thresholds, YAML content)."""


class TransientNetworkError(RagError):
    """The embedding service could not be reached or answered badly.

    Retried by the embedding client; surfaced once all attempts are spent.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(RagError):
    """The embedding service returned no embeddings."""


class DimensionMismatchError(RagError, ValueError):
    """Two vectors that must share a dimension do not."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class ServiceUnavailableError(RagError):
    """The embedding service failed its availability probe."""


class BuildInProgressError(RagError):
    """A build was requested while another build is still running."""


class DuplicateSourceError(RagError):
    """An incremental build would index a source that is already stored."""

    def __init__(self, sources: list[str]) -> None:
        joined = ", ".join(sources)
        super().__init__(
            f"Sources already indexed: {joined}. Clear the index before rebuilding them."
        )
        self.sources = sources


class OperationCancelledError(RagError):
    """A build or a pending retry was cancelled."""

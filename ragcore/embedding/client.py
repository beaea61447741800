"""HTTP client for an Ollama-compatible embedding service."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Protocol

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ragcore.config import EmbeddingConfig
from ragcore.exceptions import (
    EmptyResponseError,
    OperationCancelledError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

EMBED_PATH = "/api/embed"
HEALTH_PATH = "/api/tags"
HEALTH_TIMEOUT = 5.0


class EmbeddingClient(Protocol):
    """What the retrieval service needs from an embedding backend."""

    def embed(self, text: str) -> list[float]:
        ...

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        ...

    def embed_each(self, texts: Sequence[str]) -> list[list[float]]:
        ...

    def is_available(self) -> bool:
        ...

    def close(self) -> None:
        ...


class OllamaEmbeddingClient:
    """Generates embeddings through ``POST /api/embed``.

    Requests are ``{"model": ..., "input": text | [texts]}`` and responses
    ``{"model": ..., "embeddings": [[float, ...], ...]}``.

    Failed requests (non-2xx status, transport errors, malformed bodies) are
    retried with a fixed delay; after the last attempt the last error is
    raised. An empty ``embeddings`` list is not retried. The retry delay
    waits on an event, so ``close()`` cuts a pending retry short.

    Args:
        base_url: Service root, e.g. ``http://localhost:11434``.
        model: Embedding model name.
        timeout: Request timeout in seconds.
        connect_timeout: Connection timeout in seconds.
        max_attempts: Total attempts per request.
        retry_delay: Seconds to wait between attempts.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        sleep: Optional replacement for the retry delay function.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 300.0,
        connect_timeout: float = 30.0,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._closed = threading.Event()
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(retry_delay),
            retry=retry_if_exception_type(TransientNetworkError),
            sleep=sleep or self._interruptible_sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

    @classmethod
    def from_config(cls, config: EmbeddingConfig, **kwargs) -> OllamaEmbeddingClient:
        return cls(
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout,
            connect_timeout=config.connect_timeout,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay,
            **kwargs,
        )

    @property
    def model(self) -> str:
        return self._model

    def embed(self, text: str) -> list[float]:
        """Generate the embedding of a single text.

        Raises:
            TransientNetworkError: If every attempt failed.
            EmptyResponseError: If the service returned no embeddings.
        """
        logger.debug("Generating embedding for text length: %d", len(text))
        embeddings = self._embed_with_retry(text)
        logger.debug("Embedding generated, vector size: %d", len(embeddings[0]))
        return embeddings[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate embeddings for several texts in one request.

        The result follows the input order. If the service returns a
        different number of vectors, a warning is logged and the vectors
        are returned as received.
        """
        if not texts:
            return []

        logger.debug("Generating batch embeddings for %d texts", len(texts))
        embeddings = self._embed_with_retry(list(texts))
        if len(embeddings) != len(texts):
            logger.warning(
                "Expected %d embeddings but got %d", len(texts), len(embeddings)
            )
        return embeddings

    def embed_each(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts one request at a time."""
        logger.info("Generating embeddings for %d texts one by one", len(texts))
        return [self.embed(text) for text in texts]

    def is_available(self) -> bool:
        """Probe the service; any failure counts as unavailable."""
        if self._closed.is_set():
            return False
        try:
            response = self._client.get(HEALTH_PATH, timeout=HEALTH_TIMEOUT)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Embedding service is not available: %s", exc)
            return False
        return response.is_success

    def close(self) -> None:
        self._closed.set()
        self._client.close()

    def __enter__(self) -> OllamaEmbeddingClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _embed_with_retry(self, payload_input: str | list[str]) -> list[list[float]]:
        if self._closed.is_set():
            raise OperationCancelledError("Embedding client is closed")

        retrying = self._retrying.copy()
        try:
            return retrying(self._request_embeddings, payload_input)
        except TransientNetworkError:
            logger.error(
                "Embedding request failed after %d attempts", self._max_attempts
            )
            raise

    def _request_embeddings(self, payload_input: str | list[str]) -> list[list[float]]:
        try:
            response = self._client.post(
                EMBED_PATH, json={"model": self._model, "input": payload_input}
            )
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Embedding request failed: {exc}") from exc

        if not response.is_success:
            raise TransientNetworkError(
                f"Embedding service returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            embeddings = [
                [float(value) for value in vector]
                for vector in response.json()["embeddings"]
            ]
        except (ValueError, KeyError, TypeError) as exc:
            raise TransientNetworkError(f"Malformed embedding response: {exc}") from exc

        if not embeddings:
            raise EmptyResponseError("No embeddings returned from embedding service")
        return embeddings

    def _interruptible_sleep(self, seconds: float) -> None:
        if self._closed.wait(seconds):
            raise OperationCancelledError("Embedding client closed while waiting to retry")

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Embedding request failed (attempt %d/%d), retrying in %.1fs: %s",
            retry_state.attempt_number,
            self._max_attempts,
            self._retry_delay,
            error,
        )

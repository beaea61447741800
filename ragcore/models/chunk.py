"""Document and chunk data models."""

import math

from pydantic import BaseModel


def estimate_tokens(text: str) -> int:
    """Estimate token count for a text string.

    Uses the common approximation of one token per four characters.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    return math.ceil(len(text) / 4)


class Document(BaseModel):
    """A raw source document handed to the build pipeline."""

    source_id: str
    text: str


class TextChunk(BaseModel):
    """A bounded span of a source document.

    ``text`` is the exact slice ``document[start_position:end_position]``.
    """

    text: str
    source_file: str
    chunk_index: int = 0
    start_position: int = 0
    end_position: int = 0
    heading_context: str = ""

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.text)

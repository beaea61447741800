"""Markdown section model used by the chunker."""

from pydantic import BaseModel


class Section(BaseModel):
    """A run of markdown text under one heading.

    ``heading_path`` is the full heading stack, e.g.
    ``"Basics > Tissues > Muscle tissue"``. Text before the first heading
    forms a section with an empty path.
    """

    title: str
    level: int = 0  # 1-6 for "#".."######", 0 for the preamble
    heading_path: str = ""
    char_start: int
    char_end: int
